"""
Unit tests for the fixed-window rate limiter and its marker stores.
"""

from typing import Dict, Optional
from unittest.mock import AsyncMock

import pytest
from starlette.responses import Response

from storefront_service.app.services.rate_limiter import (
    FixedWindowRateLimiter,
    MarkerStore,
    RedisMarkerStore,
    SignedCookieMarkerStore,
)

T0 = 1_767_000_000.0


class DictMarkerStore(MarkerStore):
    def __init__(self):
        self.values: Dict[str, float] = {}

    async def get(self, key: str) -> Optional[float]:
        return self.values.get(key)

    async def set(self, key: str, timestamp: float, ttl: int) -> None:
        self.values[key] = timestamp


class TestEvaluate:
    def test_no_previous_attempt(self):
        limiter = FixedWindowRateLimiter(window_seconds=300)
        assert limiter.evaluate(None, T0).allowed

    def test_inside_window(self):
        limiter = FixedWindowRateLimiter(window_seconds=300)

        decision = limiter.evaluate(T0, T0 + 100)

        assert not decision.allowed
        assert decision.retry_after_seconds == 200

    def test_retry_after_rounds_up(self):
        limiter = FixedWindowRateLimiter(window_seconds=300)
        assert limiter.evaluate(T0, T0 + 299.5).retry_after_seconds == 1

    def test_window_boundary_is_allowed(self):
        limiter = FixedWindowRateLimiter(window_seconds=300)
        assert limiter.evaluate(T0, T0 + 300).allowed

    def test_invalid_configuration(self):
        with pytest.raises(ValueError):
            FixedWindowRateLimiter(window_seconds=0)
        with pytest.raises(ValueError):
            FixedWindowRateLimiter(limit=0)

    def test_identity_normalization(self):
        assert (
            FixedWindowRateLimiter.normalize_identity("A.B+c@X.com") == "abcxcom"
        )


class TestCheck:
    @pytest.mark.asyncio
    async def test_one_attempt_per_window(self):
        limiter = FixedWindowRateLimiter(window_seconds=300)
        store = DictMarkerStore()

        first = await limiter.check(store, "asha@example.com", T0)
        second = await limiter.check(store, "ASHA@example.com", T0 + 10)
        third = await limiter.check(store, "asha@example.com", T0 + 301)

        assert first.allowed
        assert not second.allowed
        assert second.retry_after_seconds == 290
        assert third.allowed

    @pytest.mark.asyncio
    async def test_refused_attempt_leaves_marker_untouched(self):
        limiter = FixedWindowRateLimiter(window_seconds=300)
        store = DictMarkerStore()

        await limiter.check(store, "asha@example.com", T0)
        await limiter.check(store, "asha@example.com", T0 + 200)

        assert list(store.values.values()) == [T0]

    @pytest.mark.asyncio
    async def test_limit_above_one(self):
        limiter = FixedWindowRateLimiter(window_seconds=300, limit=2)
        store = DictMarkerStore()

        results = [
            await limiter.check(store, "asha@example.com", T0 + offset)
            for offset in (0, 10, 20)
        ]

        assert [r.allowed for r in results] == [True, True, False]
        assert results[2].retry_after_seconds == 280

    @pytest.mark.asyncio
    async def test_identities_do_not_share_markers(self):
        limiter = FixedWindowRateLimiter(window_seconds=300)
        store = DictMarkerStore()

        await limiter.check(store, "asha@example.com", T0)

        assert (await limiter.check(store, "ravi@example.com", T0)).allowed


class TestSignedCookieMarkerStore:
    @pytest.mark.asyncio
    async def test_marker_round_trips_through_response_cookie(self, jwt_handler):
        store = SignedCookieMarkerStore(jwt_handler, cookies={}, secure=False)
        await store.set("password-reset:asha", T0, 300)
        response = store.apply(Response())

        header = response.headers["set-cookie"]
        name, value = header.split(";")[0].split("=", 1)
        assert name == store.cookie_name("password-reset:asha")
        assert "HttpOnly" in header
        assert "Max-Age=300" in header

        next_request = SignedCookieMarkerStore(jwt_handler, cookies={name: value})
        assert await next_request.get("password-reset:asha") == T0

    @pytest.mark.asyncio
    async def test_tampered_cookie_is_ignored(self, jwt_handler):
        store = SignedCookieMarkerStore(jwt_handler, cookies={})
        name = store.cookie_name("password-reset:asha")

        tampered = SignedCookieMarkerStore(
            jwt_handler, cookies={name: "not.a.token"}
        )

        assert await tampered.get("password-reset:asha") is None

    @pytest.mark.asyncio
    async def test_marker_for_another_key_is_ignored(self, jwt_handler):
        store = SignedCookieMarkerStore(jwt_handler, cookies={})
        await store.set("password-reset:ravi", T0, 300)
        token = store.pending[store.cookie_name("password-reset:ravi")][0]

        forged = SignedCookieMarkerStore(
            jwt_handler,
            cookies={store.cookie_name("password-reset:asha"): token},
        )

        assert await forged.get("password-reset:asha") is None


class TestRedisMarkerStore:
    @pytest.mark.asyncio
    async def test_set_uses_expiry(self):
        client = AsyncMock()
        store = RedisMarkerStore(client, prefix="test:")

        await store.set("password-reset:asha", T0, 300)

        client.set.assert_awaited_once_with(
            "test:password-reset:asha", str(T0), ex=300
        )

    @pytest.mark.asyncio
    async def test_get(self):
        client = AsyncMock()
        client.get.return_value = str(T0)
        store = RedisMarkerStore(client, prefix="test:")

        assert await store.get("password-reset:asha") == T0
        client.get.assert_awaited_once_with("test:password-reset:asha")

    @pytest.mark.asyncio
    async def test_missing_marker(self):
        client = AsyncMock()
        client.get.return_value = None

        assert await RedisMarkerStore(client).get("password-reset:asha") is None
