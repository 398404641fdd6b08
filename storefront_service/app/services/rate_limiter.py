"""
Fixed-window rate limiter for the password recovery flow.

This limiter is best-effort. With the cookie store the marker lives on the
client, so clearing cookies resets it; even the Redis store only keys on the
submitted email. Do not treat it as a security boundary.

The limiting logic itself is stateless: ``evaluate`` maps
``(last_attempt, now)`` to a decision, and ``check`` reads and writes the
marker through an injected ``MarkerStore``.
"""

import hashlib
import math
import re
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Dict, List, Mapping, Optional, Tuple

import redis.asyncio as redis
from pydantic import BaseModel
from starlette.responses import Response

from ..utils.jwt_handler import JWTHandler
from ..utils.logging import setup_storefront_logging

logger = setup_storefront_logging("storefront_rate_limiter")

RATE_LIMIT_TOKEN_TYPE = "rate_limit_marker"


class RateLimitDecision(BaseModel):
    allowed: bool
    retry_after_seconds: int = 0


class MarkerStore(ABC):
    """Holds one timestamp per key for ``ttl`` seconds."""

    @abstractmethod
    async def get(self, key: str) -> Optional[float]:
        ...

    @abstractmethod
    async def set(self, key: str, timestamp: float, ttl: int) -> None:
        ...


class FixedWindowRateLimiter:
    def __init__(
        self, window_seconds: int = 300, limit: int = 1, scope: str = "password-reset"
    ):
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        if limit < 1:
            raise ValueError("limit must be at least 1")
        self.window_seconds = window_seconds
        self.limit = limit
        self.scope = scope

    @staticmethod
    def normalize_identity(identity: str) -> str:
        """Lower-case and strip everything that is not a letter or digit."""
        return re.sub(r"[^a-z0-9]", "", identity.lower())

    def evaluate(
        self, last_attempt: Optional[float], now: float
    ) -> RateLimitDecision:
        if last_attempt is None:
            return RateLimitDecision(allowed=True)
        elapsed = now - last_attempt
        if elapsed >= self.window_seconds:
            return RateLimitDecision(allowed=True)
        retry_after = math.ceil(self.window_seconds - max(elapsed, 0))
        return RateLimitDecision(
            allowed=False, retry_after_seconds=max(retry_after, 1)
        )

    def _slot_keys(self, identity: str) -> List[str]:
        base = f"{self.scope}:{self.normalize_identity(identity)}"
        if self.limit == 1:
            return [base]
        return [f"{base}:{slot}" for slot in range(self.limit)]

    async def check(
        self, store: MarkerStore, identity: str, now: float
    ) -> RateLimitDecision:
        """
        Record an attempt for ``identity`` if the window allows it.

        Each of the ``limit`` slots holds one attempt timestamp; the attempt
        takes a free slot or the oldest one.
        """
        slots: List[Tuple[str, Optional[float]]] = [
            (key, await store.get(key)) for key in self._slot_keys(identity)
        ]
        free = [key for key, timestamp in slots if timestamp is None]
        if free:
            key, last_attempt = free[0], None
        else:
            key, last_attempt = min(slots, key=lambda slot: slot[1])

        decision = self.evaluate(last_attempt, now)
        if decision.allowed:
            await store.set(key, now, self.window_seconds)
        else:
            logger.info(
                "Rate limit reached",
                extra={
                    "scope": self.scope,
                    "retry_after_seconds": decision.retry_after_seconds,
                },
            )
        return decision


class SignedCookieMarkerStore(MarkerStore):
    """
    Marker held by the client in a JWT-signed cookie.

    Reads come from the request cookies; writes are queued and must be
    copied onto the outgoing response with ``apply``.
    """

    def __init__(
        self,
        jwt_handler: JWTHandler,
        cookies: Mapping[str, str],
        cookie_prefix: str = "rl_",
        secure: bool = True,
    ):
        self.jwt_handler = jwt_handler
        self.cookies = cookies
        self.cookie_prefix = cookie_prefix
        self.secure = secure
        self.pending: Dict[str, Tuple[str, int]] = {}

    def cookie_name(self, key: str) -> str:
        digest = hashlib.sha256(key.encode("utf-8")).hexdigest()[:16]
        return f"{self.cookie_prefix}{digest}"

    async def get(self, key: str) -> Optional[float]:
        name = self.cookie_name(key)
        if name in self.pending:
            token = self.pending[name][0]
        else:
            token = self.cookies.get(name)
        if not token:
            return None
        try:
            payload = self.jwt_handler.decode_typed(token, RATE_LIMIT_TOKEN_TYPE)
        except ValueError as e:
            logger.info(
                "Ignoring unreadable rate limit marker", extra={"reason": str(e)}
            )
            return None
        if payload.get("key") != key:
            return None
        timestamp = payload.get("ts")
        return float(timestamp) if isinstance(timestamp, (int, float)) else None

    async def set(self, key: str, timestamp: float, ttl: int) -> None:
        token = self.jwt_handler.encode_token(
            {"key": key, "ts": timestamp},
            expires_delta=timedelta(seconds=ttl),
            token_type=RATE_LIMIT_TOKEN_TYPE,
        )
        self.pending[self.cookie_name(key)] = (token, ttl)

    def apply(self, response: Response) -> Response:
        for name, (token, ttl) in self.pending.items():
            response.set_cookie(
                name,
                token,
                max_age=ttl,
                httponly=True,
                secure=self.secure,
                samesite="lax",
            )
        return response


class RedisMarkerStore(MarkerStore):
    """Marker held server-side in Redis with ``SET ... EX``."""

    def __init__(self, client: redis.Redis, prefix: str = "storefront:ratelimit:"):
        self.client = client
        self.prefix = prefix

    @classmethod
    def from_url(cls, redis_url: str) -> "RedisMarkerStore":
        return cls(redis.from_url(redis_url, decode_responses=True))

    async def get(self, key: str) -> Optional[float]:
        value = await self.client.get(f"{self.prefix}{key}")
        return float(value) if value is not None else None

    async def set(self, key: str, timestamp: float, ttl: int) -> None:
        await self.client.set(f"{self.prefix}{key}", str(timestamp), ex=ttl)

    async def close(self) -> None:
        await self.client.aclose()
