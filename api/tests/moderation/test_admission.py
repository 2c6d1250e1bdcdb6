"""
End-to-end admission tests for the moderation surface:
- authentication, quota and rate limit rejections with their envelopes
- month rollover and quota reset
- rule ownership
- fail-closed behavior when the store is unreachable
- request logging of every outcome
"""

from datetime import datetime, timezone

import httpx
import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from gateway.database import get_session_factory
from gateway.main import app
from gateway.models import APIKey, Developer, RequestLog
from gateway.routers.moderation import _backend_path
from gateway.services.key_registry import KeyRegistry

MODERATE = "/api/v1/moderation/moderate"


class TestAuthentication:
    async def test_missing_key_is_401(self, async_client: AsyncClient, backend, session_factory):
        response = await async_client.post(MODERATE, json={"text": "hello"})

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "invalid_api_key"
        assert backend.requests == []

    @pytest.mark.parametrize(
        "value", ["not-a-key", "bal_dev_25_short", "bal_dev_2026_", "bal_dev_2026_ffffffffffff"]
    )
    async def test_malformed_or_unknown_key_is_401(
        self, async_client: AsyncClient, backend, auth_headers, api_key: APIKey, value: str
    ):
        response = await async_client.post(MODERATE, json={"text": "hello"}, headers=auth_headers(value))

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "invalid_api_key"
        assert backend.requests == []

    async def test_revoked_key_is_rejected_on_next_request(
        self,
        async_client: AsyncClient,
        auth_headers,
        bearer_headers,
        developer: Developer,
        api_key: APIKey,
    ):
        ok = await async_client.post(MODERATE, json={"text": "hi"}, headers=auth_headers(api_key.key_value))
        assert ok.status_code == 200

        revoked = await async_client.delete(
            f"/api/v1/keys/{api_key.id}", headers=bearer_headers(developer)
        )
        assert revoked.status_code == 204

        response = await async_client.post(
            MODERATE, json={"text": "hi"}, headers=auth_headers(api_key.key_value)
        )
        assert response.status_code == 401


class TestForwarding:
    async def test_admitted_request_reaches_backend(
        self, async_client: AsyncClient, backend, auth_headers, api_key: APIKey
    ):
        backend.queue(httpx.Response(200, json={"flagged": True, "categories": ["spam"]}))

        response = await async_client.post(
            "/api/v1/moderation/moderate?mode=strict",
            json={"text": "buy now"},
            headers=auth_headers(api_key.key_value),
        )

        assert response.status_code == 200
        assert response.json() == {"flagged": True, "categories": ["spam"]}

        sent = backend.requests[0]
        assert sent.method == "POST"
        assert sent.url.path == "/moderate"
        assert sent.url.params["mode"] == "strict"
        assert "x-api-key" not in sent.headers
        assert sent.headers["x-gateway-key-id"] == str(api_key.id)
        assert sent.headers["x-request-id"] == response.headers["X-Request-ID"]

    async def test_admission_headers_are_attached(
        self, async_client: AsyncClient, auth_headers, api_key: APIKey
    ):
        response = await async_client.post(
            MODERATE, json={"text": "hi"}, headers=auth_headers(api_key.key_value)
        )

        assert response.headers["X-RateLimit-Limit"] == "10"
        assert response.headers["X-RateLimit-Remaining"] == "19"
        assert response.headers["X-Quota-Limit"] == "100"
        assert response.headers["X-Quota-Remaining"] == "99"
        assert response.headers["X-Quota-Reset"] == "2026-11-01T00:00:00+00:00"

    async def test_backend_4xx_is_passed_through(
        self, async_client: AsyncClient, backend, auth_headers, api_key: APIKey
    ):
        backend.queue(httpx.Response(422, json={"detail": "text is required"}))

        response = await async_client.post(MODERATE, json={}, headers=auth_headers(api_key.key_value))

        assert response.status_code == 422
        assert response.json() == {"detail": "text is required"}

    async def test_backend_outage_still_consumes_quota(
        self, async_client: AsyncClient, backend, auth_headers, api_key: APIKey
    ):
        backend.queue(httpx.ConnectError("refused"), httpx.ConnectError("refused"))

        response = await async_client.post(
            MODERATE, json={"text": "hi"}, headers=auth_headers(api_key.key_value)
        )
        assert response.status_code == 503
        assert response.json()["error"]["code"] == "backend_unavailable"

        usage = await async_client.get("/api/v1/usage", headers=auth_headers(api_key.key_value))
        assert usage.json()["used"] == 1

    async def test_backend_timeout_is_504(
        self, async_client: AsyncClient, backend, auth_headers, api_key: APIKey
    ):
        backend.queue(httpx.ReadTimeout("slow"))

        response = await async_client.post(
            MODERATE, json={"text": "hi"}, headers=auth_headers(api_key.key_value)
        )

        assert response.status_code == 504
        assert response.json()["error"]["code"] == "backend_timeout"


class TestQuota:
    async def test_monthly_quota_scenario_with_rollover(
        self,
        async_client: AsyncClient,
        auth_headers,
        admin_headers,
        registry: KeyRegistry,
        developer: Developer,
        clock,
    ):
        api_key = await registry.create_key(developer.id, "small", monthly_quota=2)
        headers = auth_headers(api_key.key_value)

        first = await async_client.post(MODERATE, json={"text": "1"}, headers=headers)
        assert first.status_code == 200
        assert first.headers["X-Quota-Remaining"] == "1"

        second = await async_client.post(MODERATE, json={"text": "2"}, headers=headers)
        assert second.status_code == 200
        assert second.headers["X-Quota-Remaining"] == "0"

        third = await async_client.post(MODERATE, json={"text": "3"}, headers=headers)
        assert third.status_code == 429
        error = third.json()["error"]
        assert error["code"] == "quota_exceeded"
        assert error["limit"] == 2
        assert error["reset_at"] == "2026-11-01T00:00:00+00:00"
        assert third.headers["X-Quota-Reset"] == "2026-11-01T00:00:00+00:00"

        clock.set(datetime(2026, 11, 1, 0, 0, 1, tzinfo=timezone.utc))
        reset = await async_client.post("/api/v1/admin/quotas/reset", headers=admin_headers)
        assert reset.status_code == 200
        assert reset.json()["period"] == "2026-11"

        fourth = await async_client.post(MODERATE, json={"text": "4"}, headers=headers)
        assert fourth.status_code == 200

        usage = await async_client.get("/api/v1/usage", headers=headers)
        assert usage.json()["period"] == "2026-11"
        assert usage.json()["used"] == 1
        assert usage.json()["limit"] == 2

    async def test_exhausted_quota_is_reported_before_rate_limit(
        self,
        async_client: AsyncClient,
        auth_headers,
        registry: KeyRegistry,
        developer: Developer,
    ):
        api_key = await registry.create_key(developer.id, monthly_quota=1)
        headers = auth_headers(api_key.key_value)

        await async_client.post(MODERATE, json={}, headers=headers)
        for _ in range(25):
            response = await async_client.post(MODERATE, json={}, headers=headers)
            assert response.json()["error"]["code"] == "quota_exceeded"

    async def test_usage_endpoint_is_not_metered(
        self, async_client: AsyncClient, auth_headers, api_key: APIKey
    ):
        headers = auth_headers(api_key.key_value)
        for _ in range(3):
            response = await async_client.get("/api/v1/usage", headers=headers)
            assert response.status_code == 200

        assert response.json()["used"] == 0
        assert response.json()["remaining"] == 100


class TestRateLimit:
    async def test_burst_then_rate_limited_with_retry_after(
        self, async_client: AsyncClient, auth_headers, api_key: APIKey, clock
    ):
        headers = auth_headers(api_key.key_value)
        for _ in range(20):
            response = await async_client.post(MODERATE, json={}, headers=headers)
            assert response.status_code == 200

        limited = await async_client.post(MODERATE, json={}, headers=headers)
        assert limited.status_code == 429
        assert limited.json()["error"]["code"] == "rate_limited"
        assert limited.json()["error"]["retry_after_seconds"] == 6.0
        assert limited.headers["Retry-After"] == "6"

        clock.advance(6)
        assert (await async_client.post(MODERATE, json={}, headers=headers)).status_code == 200

    async def test_rate_limited_requests_still_count_against_quota(
        self, async_client: AsyncClient, auth_headers, api_key: APIKey
    ):
        headers = auth_headers(api_key.key_value)
        for _ in range(22):
            await async_client.post(MODERATE, json={}, headers=headers)

        usage = await async_client.get("/api/v1/usage", headers=headers)
        assert usage.json()["used"] == 22


class TestRuleOwnership:
    async def _create_rule(self, client: AsyncClient, backend, headers, rule_id: str):
        backend.queue(httpx.Response(201, json={"id": rule_id, "pattern": "spam"}))
        return await client.post("/api/v1/moderation/rules", json={"pattern": "spam"}, headers=headers)

    async def test_creator_can_read_update_and_delete(
        self, async_client: AsyncClient, backend, auth_headers, api_key: APIKey
    ):
        headers = auth_headers(api_key.key_value)
        created = await self._create_rule(async_client, backend, headers, "rule-42")
        assert created.status_code == 201

        backend.queue(httpx.Response(200, json={"id": "rule-42"}))
        read = await async_client.get("/api/v1/moderation/rules/rule-42", headers=headers)
        assert read.status_code == 200

        backend.queue(httpx.Response(200, json={"id": "rule-42", "pattern": "ham"}))
        updated = await async_client.put(
            "/api/v1/moderation/rules/rule-42", json={"pattern": "ham"}, headers=headers
        )
        assert updated.status_code == 200

        backend.queue(httpx.Response(204))
        deleted = await async_client.delete("/api/v1/moderation/rules/rule-42", headers=headers)
        assert deleted.status_code == 204

        # Ownership is forgotten once the backend confirms the delete
        after = await async_client.get("/api/v1/moderation/rules/rule-42", headers=headers)
        assert after.status_code == 403

    async def test_other_key_is_forbidden(
        self,
        async_client: AsyncClient,
        backend,
        auth_headers,
        api_key: APIKey,
        second_api_key: APIKey,
    ):
        await self._create_rule(async_client, backend, auth_headers(api_key.key_value), "rule-7")
        calls_before = len(backend.requests)

        response = await async_client.delete(
            "/api/v1/moderation/rules/rule-7", headers=auth_headers(second_api_key.key_value)
        )

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "forbidden"
        assert len(backend.requests) == calls_before

    async def test_unknown_rule_is_forbidden(
        self, async_client: AsyncClient, backend, auth_headers, api_key: APIKey
    ):
        response = await async_client.get(
            "/api/v1/moderation/rules/never-created", headers=auth_headers(api_key.key_value)
        )

        assert response.status_code == 403
        assert backend.requests == []

    async def test_failed_creation_records_no_owner(
        self, async_client: AsyncClient, backend, auth_headers, api_key: APIKey
    ):
        headers = auth_headers(api_key.key_value)
        backend.queue(httpx.Response(400, json={"id": "rule-9", "detail": "invalid pattern"}))
        created = await async_client.post("/api/v1/moderation/rules", json={}, headers=headers)
        assert created.status_code == 400

        response = await async_client.get("/api/v1/moderation/rules/rule-9", headers=headers)
        assert response.status_code == 403

    async def test_listing_rules_uses_generic_proxy(
        self, async_client: AsyncClient, backend, auth_headers, api_key: APIKey
    ):
        backend.queue(httpx.Response(200, json={"items": []}))

        response = await async_client.get("/api/v1/moderation/rules", headers=auth_headers(api_key.key_value))

        assert response.status_code == 200
        assert backend.requests[0].url.path == "/rules"

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/v1/moderation/rules/rule-7/"),
            ("DELETE", "/api/v1/moderation/rules/rule-7/"),
            ("POST", "/api/v1/moderation/rules/rule-7"),
            ("GET", "/api/v1/moderation/rules/rule-7/versions"),
            ("PATCH", "/api/v1/moderation/rules/rule-7/actions/enable"),
        ],
    )
    async def test_other_key_is_forbidden_on_every_rule_path(
        self,
        async_client: AsyncClient,
        backend,
        auth_headers,
        api_key: APIKey,
        second_api_key: APIKey,
        method: str,
        path: str,
    ):
        await self._create_rule(async_client, backend, auth_headers(api_key.key_value), "rule-7")
        calls_before = len(backend.requests)

        response = await async_client.request(
            method, path, json={"enabled": True}, headers=auth_headers(second_api_key.key_value)
        )

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "forbidden"
        assert len(backend.requests) == calls_before

    async def test_creator_reaches_rule_sub_paths(
        self, async_client: AsyncClient, backend, auth_headers, api_key: APIKey
    ):
        headers = auth_headers(api_key.key_value)
        await self._create_rule(async_client, backend, headers, "rule-7")

        response = await async_client.get("/api/v1/moderation/rules/rule-7/versions", headers=headers)

        assert response.status_code == 200
        assert backend.requests[-1].url.path == "/rules/rule-7/versions"

    async def test_trailing_slash_delete_forgets_owner(
        self, async_client: AsyncClient, backend, auth_headers, api_key: APIKey
    ):
        headers = auth_headers(api_key.key_value)
        await self._create_rule(async_client, backend, headers, "rule-7")

        backend.queue(httpx.Response(204))
        deleted = await async_client.delete("/api/v1/moderation/rules/rule-7/", headers=headers)
        assert deleted.status_code == 204
        assert backend.requests[-1].url.path == "/rules/rule-7/"

        after = await async_client.get("/api/v1/moderation/rules/rule-7", headers=headers)
        assert after.status_code == 403

    async def test_create_with_trailing_slash_records_owner(
        self, async_client: AsyncClient, backend, auth_headers, api_key: APIKey
    ):
        headers = auth_headers(api_key.key_value)
        backend.queue(httpx.Response(201, json={"id": "rule-8"}))
        created = await async_client.post("/api/v1/moderation/rules/", json={}, headers=headers)
        assert created.status_code == 201

        response = await async_client.get("/api/v1/moderation/rules/rule-8", headers=headers)
        assert response.status_code == 200


class TestBackendPath:
    @pytest.mark.parametrize(
        "path,expected,segments",
        [
            ("moderate", "moderate", ["moderate"]),
            ("rules/rule-7/", "rules/rule-7/", ["rules", "rule-7"]),
            ("x/../rules/rule-7", "rules/rule-7", ["rules", "rule-7"]),
            ("./rules//rule-7/versions", "rules/rule-7/versions", ["rules", "rule-7", "versions"]),
            ("../../rules", "rules", ["rules"]),
            ("", "", []),
        ],
    )
    def test_dot_and_empty_segments_are_resolved(self, path, expected, segments):
        assert _backend_path(path) == (expected, segments)



class TestStoreUnavailable:
    async def test_unreachable_store_fails_closed(
        self, async_client: AsyncClient, backend, auth_headers
    ):
        broken_engine = create_async_engine(
            "sqlite+aiosqlite:////nonexistent-directory/gateway.db", poolclass=NullPool
        )
        broken_factory = async_sessionmaker(bind=broken_engine, class_=AsyncSession)
        app.dependency_overrides[get_session_factory] = lambda: broken_factory

        try:
            response = await async_client.post(
                MODERATE, json={"text": "hi"}, headers=auth_headers("bal_dev_2026_0123456789abcdef")
            )
        finally:
            await broken_engine.dispose()

        assert response.status_code == 503
        assert response.json()["error"]["code"] == "service_unavailable"
        assert backend.requests == []


class TestRequestLog:
    async def test_every_outcome_is_logged(
        self,
        async_client: AsyncClient,
        auth_headers,
        api_key: APIKey,
        session_factory,
    ):
        await async_client.post(MODERATE, json={"text": "hi"}, headers=auth_headers(api_key.key_value))
        await async_client.post(MODERATE, json={"text": "hi"}, headers=auth_headers("nope"))

        async with session_factory() as session:
            result = await session.execute(select(RequestLog).order_by(RequestLog.created_at))
            logs = list(result.scalars().all())

        assert len(logs) == 2
        admitted = next(log for log in logs if log.status_code == 200)
        rejected = next(log for log in logs if log.status_code == 401)

        assert admitted.api_key_id == api_key.id
        assert admitted.error_code is None
        assert admitted.endpoint == MODERATE
        assert admitted.method == "POST"
        assert admitted.request_id

        assert rejected.api_key_id is None
        assert rejected.error_code == "invalid_api_key"
