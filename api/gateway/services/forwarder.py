"""
Proxy forwarder to the moderation backend.

Retries are bounded and jittered. A request whose body may already have
reached the backend is never replayed unless the method is idempotent:
moderation calls (POST/PUT/PATCH/DELETE) are only retried when the
connection itself could not be established.
"""

import asyncio
import logging
import random
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass

import httpx

from gateway.config import ForwarderPolicy
from gateway.errors import BackendError, BackendTimeout, BackendUnavailable

logger = logging.getLogger(__name__)

IDEMPOTENT_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})

# Never forwarded in either direction
HOP_BY_HOP_HEADERS = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailers",
        "transfer-encoding",
        "upgrade",
    }
)

# Request headers owned by the gateway, not the caller
STRIPPED_REQUEST_HEADERS = HOP_BY_HOP_HEADERS | {"host", "content-length", "x-api-key"}

# Recomputed by the ASGI server or replaced by gateway headers
STRIPPED_RESPONSE_HEADERS = HOP_BY_HOP_HEADERS | {
    "content-length",
    "content-encoding",
    "x-ratelimit-limit",
    "x-ratelimit-remaining",
    "x-ratelimit-reset",
}


@dataclass(frozen=True, slots=True)
class BackendResponse:
    status_code: int
    headers: dict[str, str]
    content: bytes
    attempts: int
    elapsed_ms: int


class ProxyForwarder:
    """Relays admitted requests to the moderation backend."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        policy: ForwarderPolicy,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.client = client
        self.policy = policy
        self.sleep = sleep

    def _backoff(self, attempt: int) -> float:
        delay = min(self.policy.retry_max_delay, self.policy.retry_base_delay * (2 ** (attempt - 1)))
        return delay * random.uniform(0.5, 1.0)

    async def forward(
        self,
        method: str,
        path: str,
        *,
        headers: Mapping[str, str] | None = None,
        params: httpx.QueryParams | Mapping[str, str] | None = None,
        content: bytes = b"",
    ) -> BackendResponse:
        """
        Send one request to the backend and return its response.

        Backend 4xx and 5xx responses are returned unchanged; only transport
        failures raise.

        Raises:
            BackendUnavailable: connection could not be established
            BackendTimeout: request-scoped timeout exceeded
            BackendError: any other transport failure
        """
        method = method.upper()
        url = f"{self.policy.backend_url}/{path.lstrip('/')}"
        outgoing = {
            name: value
            for name, value in (headers or {}).items()
            if name.lower() not in STRIPPED_REQUEST_HEADERS
        }
        idempotent = method in IDEMPOTENT_METHODS
        started = time.monotonic()
        deadline = started + self.policy.timeout_seconds
        attempt = 0

        while True:
            attempt += 1
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise BackendTimeout()

            try:
                response = await self.client.request(
                    method,
                    url,
                    headers=outgoing,
                    params=params,
                    content=content,
                    timeout=remaining,
                )
            except (httpx.ConnectError, httpx.ConnectTimeout) as exc:
                if attempt < self.policy.max_attempts:
                    delay = self._backoff(attempt)
                    logger.warning(
                        "Backend connect failed for %s %s (attempt %d), retrying in %.2fs: %s",
                        method,
                        url,
                        attempt,
                        delay,
                        exc,
                    )
                    await self.sleep(delay)
                    continue
                logger.error("Backend unreachable for %s %s after %d attempts", method, url, attempt)
                raise BackendUnavailable() from exc
            except httpx.TimeoutException as exc:
                logger.error("Backend timed out for %s %s", method, url)
                raise BackendTimeout() from exc
            except httpx.TransportError as exc:
                logger.error("Backend transport error for %s %s: %s", method, url, exc)
                raise BackendError() from exc

            if response.status_code >= 500 and idempotent and attempt < self.policy.max_attempts:
                delay = self._backoff(attempt)
                logger.warning(
                    "Backend returned %d for %s %s (attempt %d), retrying in %.2fs",
                    response.status_code,
                    method,
                    url,
                    attempt,
                    delay,
                )
                await self.sleep(delay)
                continue

            elapsed_ms = int((time.monotonic() - started) * 1000)
            logger.info(
                "Proxied %s %s -> %d in %dms (%d attempts)",
                method,
                url,
                response.status_code,
                elapsed_ms,
                attempt,
            )
            return BackendResponse(
                status_code=response.status_code,
                headers={
                    name: value
                    for name, value in response.headers.items()
                    if name.lower() not in STRIPPED_RESPONSE_HEADERS
                },
                content=response.content,
                attempts=attempt,
                elapsed_ms=elapsed_ms,
            )
