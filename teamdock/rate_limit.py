from __future__ import annotations

import hashlib
import logging
import time
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Callable, cast

from fastapi import Depends, Request, Response, status
from redis import Redis
from redis.exceptions import RedisError

from .config import settings
from .errors import api_error

logger = logging.getLogger(__name__)

_RATE_LIMIT_LUA = """
local current = redis.call("INCR", KEYS[1])
if current == 1 then
  redis.call("EXPIRE", KEYS[1], ARGV[1])
end
local ttl = redis.call("TTL", KEYS[1])
return {current, ttl}
"""


@lru_cache(maxsize=1)
def get_redis_client() -> Redis:
    return Redis.from_url(settings.redis_url, decode_responses=True)


def ping_redis() -> bool:
    try:
        return bool(get_redis_client().ping())
    except RedisError:
        return False


@dataclass(frozen=True)
class RateLimitPolicy:
    name: str
    limit: int
    window_seconds: int


def _load_policies() -> dict[str, RateLimitPolicy]:
    return {
        "secret_login": RateLimitPolicy(
            "secret_login",
            settings.rate_limit_login_limit,
            settings.rate_limit_login_window_seconds,
        ),
        "profile_signup": RateLimitPolicy(
            "profile_signup",
            settings.rate_limit_signup_limit,
            settings.rate_limit_signup_window_seconds,
        ),
        "oauth_initiate": RateLimitPolicy(
            "oauth_initiate",
            settings.rate_limit_oauth_limit,
            settings.rate_limit_oauth_window_seconds,
        ),
    }


def client_ip(request: Request) -> str:
    if settings.trust_proxy_headers:
        xff = request.headers.get("x-forwarded-for")
        if xff:
            return xff.split(",")[0].strip()
    if request.client is None:
        return "unknown"
    return request.client.host


def build_rate_limit_key(
    policy: RateLimitPolicy, principal: str, now_seconds: float | None = None
) -> str:
    epoch_seconds = int(now_seconds if now_seconds is not None else time.time())
    window_bucket = epoch_seconds // policy.window_seconds
    principal_hash = hashlib.sha256(principal.encode("utf-8")).hexdigest()[:16]
    return f"rl:{policy.name}:{window_bucket}:{principal_hash}"


class RedisRateLimiter:
    def __init__(self, redis_factory: Callable[[], Redis] = get_redis_client):
        self._redis_factory = redis_factory

    def check(self, policy: RateLimitPolicy, principal: str) -> tuple[bool, int, int]:
        key = build_rate_limit_key(policy, principal)
        raw_result = self._redis_factory().eval(  # type: ignore[arg-type]
            _RATE_LIMIT_LUA, 1, key, str(policy.window_seconds)
        )
        result = cast(list[Any], raw_result)
        count = int(result[0])
        ttl = max(int(result[1]), 0)
        return count <= policy.limit, max(policy.limit - count, 0), ttl


_rate_limiter = RedisRateLimiter()


def set_rate_limiter(rate_limiter: RedisRateLimiter) -> None:
    global _rate_limiter
    _rate_limiter = rate_limiter


def _should_rate_limit() -> bool:
    return settings.enable_optional_rate_limiting and settings.rate_limit_enabled


def rate_limit_dependency(policy_name: str):
    policies = _load_policies()
    if policy_name not in policies:
        raise ValueError(f"Unknown rate limit policy: {policy_name}")
    policy = policies[policy_name]

    def _dependency(request: Request, response: Response) -> None:
        if not _should_rate_limit():
            return

        principal = f"ip:{client_ip(request)}"
        try:
            allowed, remaining, retry_after = _rate_limiter.check(policy, principal)
        except RedisError:
            logger.warning("Rate limit backend unavailable", extra={"policy": policy.name})
            if settings.rate_limit_fail_open:
                return
            raise api_error(
                "Rate limiting backend is unavailable",
                error_code="rate_limit_backend_unavailable",
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            )

        response.headers["X-RateLimit-Limit"] = str(policy.limit)
        response.headers["X-RateLimit-Remaining"] = str(remaining)
        response.headers["X-RateLimit-Reset"] = str(retry_after)
        if not allowed:
            exc = api_error(
                "Rate limit exceeded",
                error_code="rate_limit_exceeded",
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            )
            exc.headers = {"Retry-After": str(max(retry_after, 1))}
            raise exc

    return Depends(_dependency)
