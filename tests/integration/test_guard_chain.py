"""Integration tests for the guard stages and their ordering."""

import pytest

from outbound_gateway.core.hooks import GatewayHooks
from outbound_gateway.core.options import GatewayOptions, InMemoryRate
from outbound_gateway.core.rate_limit import RateCounter

PROXY_PATH = "/api/proxy"


def deny(request):
    return False


async def async_deny(request):
    return False


class TestPredicateGuards:
    """Test auth, csrf and validate guards."""

    @pytest.mark.asyncio
    async def test_auth_denied(self, make_client, upstream_url, upstream_hits):
        client = await make_client(GatewayOptions(hooks=GatewayHooks(auth=deny)))

        response = await client.post(
            PROXY_PATH, json={"method": "GET", "endpoint": f"{upstream_url}/echo"}
        )

        assert response.status == 401
        assert await response.json() == {"error": "Unauthorized (auth)"}
        assert upstream_hits == []

    @pytest.mark.asyncio
    async def test_csrf_denied(self, make_client):
        client = await make_client(GatewayOptions(hooks=GatewayHooks(csrf=async_deny)))

        response = await client.post(PROXY_PATH, json={})

        assert response.status == 403
        assert await response.json() == {"error": "Forbidden (csrf/xss)"}

    @pytest.mark.asyncio
    async def test_validate_denied(self, make_client):
        client = await make_client(GatewayOptions(hooks=GatewayHooks(validate=deny)))

        response = await client.post(PROXY_PATH, json={})

        assert response.status == 401
        assert await response.json() == {"error": "Unauthorized"}

    @pytest.mark.asyncio
    async def test_passing_guards_reach_upstream(self, make_client, upstream_url):
        hooks = GatewayHooks(
            auth=lambda request: request.headers.get("Authorization") == "Bearer ok",
            csrf=lambda request: True,
            validate=lambda request: True,
        )
        client = await make_client(GatewayOptions(hooks=hooks))

        response = await client.post(
            PROXY_PATH,
            json={"method": "GET", "endpoint": f"{upstream_url}/todos/3"},
            headers={"Authorization": "Bearer ok"},
        )

        assert response.status == 200
        assert (await response.json())["id"] == 3

    @pytest.mark.asyncio
    async def test_guard_exception_is_500(self, make_client):
        def broken(request):
            raise RuntimeError("auth backend down")

        client = await make_client(GatewayOptions(hooks=GatewayHooks(auth=broken)))

        response = await client.post(PROXY_PATH, json={})

        assert response.status == 500
        assert await response.json() == {"error": "auth backend down"}


class TestGuardOrder:
    """Test that guards run strictly in order and stop at the first denial."""

    @pytest.mark.asyncio
    async def test_auth_before_csrf(self, make_client):
        calls = []

        def csrf(request):
            calls.append("csrf")
            return False

        client = await make_client(GatewayOptions(hooks=GatewayHooks(auth=deny, csrf=csrf)))
        response = await client.post(PROXY_PATH, json={})

        assert response.status == 401
        assert calls == []

    @pytest.mark.asyncio
    async def test_csrf_before_origin(self, make_client):
        client = await make_client(
            GatewayOptions(hooks=GatewayHooks(csrf=deny), allow_origins="https://a.com")
        )

        response = await client.post(PROXY_PATH, json={}, headers={"Origin": "https://evil.com"})

        assert response.status == 403
        assert await response.json() == {"error": "Forbidden (csrf/xss)"}

    @pytest.mark.asyncio
    async def test_origin_before_rate_limit(self, make_client):
        counter = RateCounter()
        client = await make_client(
            GatewayOptions(
                allow_origins="https://a.com",
                in_memory_rate=InMemoryRate(window_ms=60_000, max=1),
            ),
            counter=counter,
        )

        response = await client.post(PROXY_PATH, json={}, headers={"Origin": "https://evil.com"})

        assert response.status == 403
        assert len(counter) == 0

    @pytest.mark.asyncio
    async def test_rate_limit_before_validate(self, make_client):
        calls = []

        def validate(request):
            calls.append("validate")
            return False

        client = await make_client(
            GatewayOptions(
                hooks=GatewayHooks(validate=validate),
                in_memory_rate=InMemoryRate(window_ms=60_000, max=1),
            )
        )

        first = await client.post(PROXY_PATH, json={})
        second = await client.post(PROXY_PATH, json={})

        assert first.status == 401
        assert second.status == 429
        assert calls == ["validate"]

    @pytest.mark.asyncio
    async def test_in_memory_before_external_rate_limit(self, make_client):
        calls = []

        def external(request):
            calls.append("external")
            return True

        client = await make_client(
            GatewayOptions(
                hooks=GatewayHooks(rate_limit=external),
                in_memory_rate=InMemoryRate(window_ms=60_000, max=1),
            )
        )

        await client.post(PROXY_PATH, json={})
        await client.post(PROXY_PATH, json={})

        assert calls == ["external"]


class TestCors:
    """Test origin control and preflight handling."""

    @pytest.mark.asyncio
    async def test_preflight_allowed(self, make_client, upstream_hits):
        client = await make_client(GatewayOptions(allow_origins=["https://a.com"]))

        response = await client.options(PROXY_PATH, headers={"Origin": "https://a.com"})

        assert response.status == 204
        assert response.headers["Access-Control-Allow-Origin"] == "https://a.com"
        assert response.headers["Access-Control-Allow-Methods"] == "POST,OPTIONS"
        assert response.headers["Access-Control-Allow-Headers"] == "Content-Type, Authorization"
        assert upstream_hits == []

    @pytest.mark.parametrize("origin", ["https://a.com", "https://b.org", "null"])
    @pytest.mark.asyncio
    async def test_wildcard_preflight_echoes_origin(self, make_client, origin):
        client = await make_client(GatewayOptions(allow_origins="*"))

        response = await client.options(PROXY_PATH, headers={"Origin": origin})

        assert response.status == 204
        assert response.headers["Access-Control-Allow-Origin"] == origin

    @pytest.mark.asyncio
    async def test_preflight_without_origin_gets_wildcard(self, make_client):
        client = await make_client(GatewayOptions(allow_origins=["*"]))

        response = await client.options(PROXY_PATH)

        assert response.status == 204
        assert response.headers["Access-Control-Allow-Origin"] == "*"

    @pytest.mark.asyncio
    async def test_preflight_denied(self, make_client):
        client = await make_client(GatewayOptions(allow_origins=["https://a.com"]))

        response = await client.options(PROXY_PATH, headers={"Origin": "https://evil.com"})

        assert response.status == 403
        assert await response.json() == {"error": "Origin not allowed"}
        assert "Access-Control-Allow-Origin" not in response.headers
        assert response.headers["Access-Control-Allow-Methods"] == "POST,OPTIONS"

    @pytest.mark.asyncio
    async def test_preflight_custom_methods_and_headers(self, make_client):
        client = await make_client(
            GatewayOptions(
                allow_origins="*",
                allow_methods=("POST", "PUT", "OPTIONS"),
                allow_headers=("Content-Type", "X-Api-Key"),
            )
        )

        response = await client.options(PROXY_PATH, headers={"Origin": "https://a.com"})

        assert response.headers["Access-Control-Allow-Methods"] == "POST,PUT,OPTIONS"
        assert response.headers["Access-Control-Allow-Headers"] == "Content-Type, X-Api-Key"

    @pytest.mark.asyncio
    async def test_preflight_not_rate_limited(self, make_client):
        counter = RateCounter()
        client = await make_client(
            GatewayOptions(in_memory_rate=InMemoryRate(window_ms=60_000, max=1)),
            counter=counter,
        )

        for _ in range(3):
            response = await client.options(PROXY_PATH, headers={"Origin": "https://a.com"})
            assert response.status == 204

        assert len(counter) == 0

    @pytest.mark.asyncio
    async def test_preflight_still_requires_auth(self, make_client):
        client = await make_client(GatewayOptions(hooks=GatewayHooks(auth=deny)))

        response = await client.options(PROXY_PATH, headers={"Origin": "https://a.com"})

        assert response.status == 401

    @pytest.mark.asyncio
    async def test_actual_call_denied_origin(self, make_client, upstream_url, upstream_hits):
        client = await make_client(GatewayOptions(allow_origins="https://a.com"))

        response = await client.post(
            PROXY_PATH,
            json={"method": "GET", "endpoint": f"{upstream_url}/echo"},
            headers={"Origin": "https://evil.com"},
        )

        assert response.status == 403
        assert await response.json() == {"error": "Origin not allowed"}
        assert "Access-Control-Allow-Origin" not in response.headers
        assert "Access-Control-Allow-Methods" not in response.headers
        assert upstream_hits == []

    @pytest.mark.asyncio
    async def test_on_cors_denied_body(self, make_client):
        seen = []

        async def on_cors_denied(origin):
            seen.append(origin)
            return {"error": "cors", "origin": origin}

        client = await make_client(
            GatewayOptions(
                hooks=GatewayHooks(on_cors_denied=on_cors_denied), allow_origins="https://a.com"
            )
        )

        response = await client.post(PROXY_PATH, json={}, headers={"Origin": "https://evil.com"})

        assert response.status == 403
        assert await response.json() == {"error": "cors", "origin": "https://evil.com"}
        assert seen == ["https://evil.com"]

    @pytest.mark.asyncio
    async def test_allowed_origin_gets_allow_origin_header(self, make_client, upstream_url):
        client = await make_client(GatewayOptions(allow_origins=["https://a.com"]))

        response = await client.post(
            PROXY_PATH,
            json={"method": "GET", "endpoint": f"{upstream_url}/list"},
            headers={"Origin": "https://a.com"},
        )

        assert response.status == 200
        assert response.headers["Access-Control-Allow-Origin"] == "https://a.com"

    @pytest.mark.asyncio
    async def test_no_policy_no_cors_headers(self, make_client, upstream_url):
        client = await make_client()

        response = await client.post(
            PROXY_PATH,
            json={"method": "GET", "endpoint": f"{upstream_url}/list"},
            headers={"Origin": "https://anything.com"},
        )

        assert response.status == 200
        assert "Access-Control-Allow-Origin" not in response.headers

    @pytest.mark.asyncio
    async def test_predicate_policy_sees_request(self, make_client, upstream_url):
        async def policy(origin, request):
            return origin.endswith(".example.com") and request.headers.get("X-Tenant") == "t1"

        client = await make_client(GatewayOptions(allow_origins=policy))
        payload = {"method": "GET", "endpoint": f"{upstream_url}/list"}

        allowed = await client.post(
            PROXY_PATH, json=payload, headers={"Origin": "https://app.example.com", "X-Tenant": "t1"}
        )
        denied = await client.post(
            PROXY_PATH, json=payload, headers={"Origin": "https://app.example.com", "X-Tenant": "t2"}
        )

        assert allowed.status == 200
        assert denied.status == 403


class TestRateLimiting:
    """Test in-memory and external rate limiting."""

    @pytest.mark.asyncio
    async def test_max_plus_one_is_rejected(self, make_client):
        client = await make_client(
            GatewayOptions(in_memory_rate=InMemoryRate(window_ms=60_000, max=3))
        )

        statuses = [(await client.post(PROXY_PATH, json={})).status for _ in range(4)]

        # Admitted calls reach the proxy stage, which rejects the empty call
        assert statuses == [400, 400, 400, 429]

        response = await client.post(PROXY_PATH, json={})
        assert await response.json() == {"error": "Rate limit exceeded"}

    @pytest.mark.asyncio
    async def test_window_resets(self, make_client):
        counter = RateCounter()
        client = await make_client(
            GatewayOptions(in_memory_rate=InMemoryRate(window_ms=60_000, max=1)),
            counter=counter,
        )

        assert (await client.post(PROXY_PATH, json={})).status == 400
        assert (await client.post(PROXY_PATH, json={})).status == 429

        # Expire the window instead of sleeping through it
        counter.clear()

        assert (await client.post(PROXY_PATH, json={})).status == 400

    @pytest.mark.asyncio
    async def test_key_function(self, make_client):
        rate = InMemoryRate(
            window_ms=60_000, max=1, key=lambda request: request.headers.get("X-Api-Key", "")
        )
        client = await make_client(GatewayOptions(in_memory_rate=rate))

        a1 = await client.post(PROXY_PATH, json={}, headers={"X-Api-Key": "a"})
        b1 = await client.post(PROXY_PATH, json={}, headers={"X-Api-Key": "b"})
        a2 = await client.post(PROXY_PATH, json={}, headers={"X-Api-Key": "a"})

        assert a1.status == 400
        assert b1.status == 400
        assert a2.status == 429

    @pytest.mark.asyncio
    async def test_forwarded_for_is_the_default_key(self, make_client):
        counter = RateCounter()
        client = await make_client(
            GatewayOptions(in_memory_rate=InMemoryRate(window_ms=60_000, max=1)),
            counter=counter,
        )

        await client.post(PROXY_PATH, json={}, headers={"X-Forwarded-For": "203.0.113.9, 10.0.0.1"})

        assert counter.get("203.0.113.9").count == 1

    @pytest.mark.asyncio
    async def test_pipelines_do_not_share_counters(self, make_client):
        options = GatewayOptions(in_memory_rate=InMemoryRate(window_ms=60_000, max=1))
        first = await make_client(options)
        second = await make_client(options)

        assert (await first.post(PROXY_PATH, json={})).status == 400
        assert (await second.post(PROXY_PATH, json={})).status == 400

    @pytest.mark.asyncio
    async def test_external_rate_limit_denied(self, make_client):
        client = await make_client(GatewayOptions(hooks=GatewayHooks(rate_limit=async_deny)))

        response = await client.post(PROXY_PATH, json={})

        assert response.status == 429
        assert await response.json() == {"error": "Rate limit exceeded"}
