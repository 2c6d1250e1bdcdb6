"""Moderation router: the admitted, rate-limited proxy surface."""

import json
import posixpath
import time
from collections.abc import Awaitable, Callable

import httpx
from fastapi import APIRouter, Depends, Header, Request, Response, status

from gateway.auth.dependencies import (
    SystemClock,
    get_admission_pipeline,
    get_clock,
    get_current_api_key,
    get_forwarder,
    get_quota_ledger,
    get_request_log,
)
from gateway.config import settings
from gateway.errors import GatewayError
from gateway.models.developer import APIKey
from gateway.schemas.usage import QuotaUsageResponse
from gateway.services.admission import Admission, AdmissionPipeline
from gateway.services.forwarder import BackendResponse, ProxyForwarder
from gateway.services.quota import QuotaLedger, period_key_for
from gateway.services.request_log import RequestLogService
from gateway.services.store import call_store

router = APIRouter(prefix="/api/v1", tags=["Moderation"])

PROXY_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE"]

AfterForward = Callable[[Admission, BackendResponse], Awaitable[None]]


async def _relay(
    request: Request,
    backend_path: str,
    *,
    x_api_key: str | None,
    pipeline: AdmissionPipeline,
    forwarder: ProxyForwarder,
    request_log: RequestLogService,
    rule_id: str | None = None,
    after: AfterForward | None = None,
) -> Response:
    """Admit, optionally check rule ownership, forward, and log the outcome."""
    started = time.monotonic()
    body = await request.body()
    api_key_id = None
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_code: str | None = "internal_error"
    response_size = None

    try:
        admission = await pipeline.admit(x_api_key)
        api_key_id = admission.api_key.id

        if rule_id is not None:
            await pipeline.check_ownership(admission.api_key, rule_id)

        outgoing = dict(request.headers)
        outgoing["X-Request-ID"] = getattr(request.state, "request_id", "") or ""
        outgoing["X-Gateway-Key-Id"] = str(admission.api_key.id)

        backend = await forwarder.forward(
            request.method,
            backend_path,
            headers=outgoing,
            params=httpx.QueryParams(request.url.query),
            content=body,
        )
        if after is not None and 200 <= backend.status_code < 300:
            await after(admission, backend)

        status_code = backend.status_code
        error_code = None
        response_size = len(backend.content)
        return Response(
            content=backend.content,
            status_code=backend.status_code,
            headers={**backend.headers, **admission.headers()},
        )
    except GatewayError as exc:
        status_code = exc.status_code
        error_code = exc.code
        raise
    finally:
        await request_log.record(
            api_key_id=api_key_id,
            endpoint=request.url.path,
            method=request.method,
            status_code=status_code,
            error_code=error_code,
            response_time_ms=int((time.monotonic() - started) * 1000),
            request_size_bytes=len(body),
            response_size_bytes=response_size,
            user_agent=request.headers.get("user-agent"),
            ip_address=request.client.host if request.client else None,
            request_id=getattr(request.state, "request_id", None),
        )


def _rule_id_from(backend: BackendResponse) -> str | None:
    try:
        payload = json.loads(backend.content)
    except ValueError:
        return None
    if isinstance(payload, dict) and payload.get("id") is not None:
        return str(payload["id"])
    return None


@router.get(
    "/usage",
    response_model=QuotaUsageResponse,
    status_code=status.HTTP_200_OK,
)
async def get_usage(
    api_key: APIKey = Depends(get_current_api_key),
    ledger: QuotaLedger = Depends(get_quota_ledger),
    clock: SystemClock = Depends(get_clock),
) -> QuotaUsageResponse:
    """
    Quota usage for the calling API key.

    Does not count against quota or rate limit.
    """
    usage = await call_store(
        lambda: ledger.usage(api_key.id, period_key_for(clock.now()), api_key.monthly_quota),
        attempts=settings.store_retry_attempts,
        name="quota usage",
    )
    return QuotaUsageResponse(
        api_key_id=str(api_key.id),
        period=usage.period_key,
        used=usage.used,
        limit=usage.limit,
        remaining=usage.remaining,
        reset_at=usage.reset_at.isoformat(),
    )


def _backend_path(path: str) -> tuple[str, list[str]]:
    """
    Resolve empty and dot segments of a caller path.

    Returns the path forwarded to the backend and its segments, so the
    ownership decision is made on exactly what the backend will see.
    """
    segments = [segment for segment in posixpath.normpath("/" + path).split("/") if segment]
    backend_path = "/".join(segments)
    if segments and path.endswith("/"):
        backend_path += "/"
    return backend_path, segments


async def _dispatch(
    request: Request,
    path: str,
    *,
    x_api_key: str | None,
    pipeline: AdmissionPipeline,
    forwarder: ProxyForwarder,
    request_log: RequestLogService,
) -> Response:
    """
    Relay a moderation call, applying rule ownership to ``rules/<id>`` and below.

    Creating a rule (POST ``rules``) records the calling key as its owner;
    a successful DELETE of ``rules/<id>`` drops the record.
    """
    backend_path, segments = _backend_path(path)
    rule_id = None
    after: AfterForward | None = None

    if segments[:1] == ["rules"]:
        if len(segments) == 1 and request.method == "POST":

            async def remember_owner(admission: Admission, backend: BackendResponse) -> None:
                created = _rule_id_from(backend)
                if created is not None:
                    await pipeline.record_rule(admission.api_key, created)

            after = remember_owner
        elif len(segments) >= 2:
            rule_id = segments[1]
            if len(segments) == 2 and request.method == "DELETE":

                async def drop_owner(admission: Admission, backend: BackendResponse) -> None:
                    await pipeline.forget_rule(admission.api_key, rule_id)

                after = drop_owner

    return await _relay(
        request,
        backend_path,
        x_api_key=x_api_key,
        pipeline=pipeline,
        forwarder=forwarder,
        request_log=request_log,
        rule_id=rule_id,
        after=after,
    )


@router.post("/moderation/rules")
async def create_rule(
    request: Request,
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
    pipeline: AdmissionPipeline = Depends(get_admission_pipeline),
    forwarder: ProxyForwarder = Depends(get_forwarder),
    request_log: RequestLogService = Depends(get_request_log),
) -> Response:
    """Create a moderation rule; the calling key becomes its owner."""
    return await _dispatch(
        request,
        "rules",
        x_api_key=x_api_key,
        pipeline=pipeline,
        forwarder=forwarder,
        request_log=request_log,
    )


@router.api_route("/moderation/rules/{rule_id}", methods=["GET", "PUT", "PATCH", "DELETE"])
async def rule_resource(
    rule_id: str,
    request: Request,
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
    pipeline: AdmissionPipeline = Depends(get_admission_pipeline),
    forwarder: ProxyForwarder = Depends(get_forwarder),
    request_log: RequestLogService = Depends(get_request_log),
) -> Response:
    """Read, update or delete a rule owned by the calling key."""
    return await _dispatch(
        request,
        f"rules/{rule_id}",
        x_api_key=x_api_key,
        pipeline=pipeline,
        forwarder=forwarder,
        request_log=request_log,
    )


@router.api_route("/moderation/{path:path}", methods=PROXY_METHODS)
async def moderation_proxy(
    path: str,
    request: Request,
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
    pipeline: AdmissionPipeline = Depends(get_admission_pipeline),
    forwarder: ProxyForwarder = Depends(get_forwarder),
    request_log: RequestLogService = Depends(get_request_log),
) -> Response:
    """Forward any other moderation call; rule paths keep their ownership check."""
    return await _dispatch(
        request,
        path,
        x_api_key=x_api_key,
        pipeline=pipeline,
        forwarder=forwarder,
        request_log=request_log,
    )
