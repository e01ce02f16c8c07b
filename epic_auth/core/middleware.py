"""
Middleware functions for the application.

The verification codes are short, so the endpoints accepting them are rate
limited per client IP and per endpoint to prevent brute-forcing a code within
its validity window.
"""
import time
from cachetools import TTLCache
from fastapi import FastAPI, Request, Response
from redis.exceptions import RedisError
from starlette.middleware.base import BaseHTTPMiddleware

from epic_auth.core.config import settings, logger


def code_submission_paths() -> set[str]:
    """The endpoints that accept a verification code."""
    return {
        f"{settings.API_STR}/auth/login/2fa",
        f"{settings.API_STR}/auth/verify",
        f"{settings.API_STR}/settings/two-factor/verify",
        f"{settings.API_STR}/settings/change-email/verify",
    }


class VerificationRateLimiterMiddleware(BaseHTTPMiddleware):
    """
    Middleware to rate limit the code submissions.

    Only the requests to `paths` are counted (every method, since the verify
    link of the emails is a GET). The attempts of each (IP address, path) pair
    are stored in Redis when `app.state.redis_client` is set, in a fixed
    window of `window_seconds`. Otherwise an in-memory token bucket refilled
    at `max_attempts / window_seconds` tokens per second is used.

    Parameters:
    ----------
    app : FastAPI
        The FastAPI application.
    max_attempts : int
        The maximum number of submissions allowed within the window.
    window_seconds : int
        The window size in seconds.
    paths : set[str] | None
        The rate limited paths, defaults to the code submission endpoints.
    """
    # pylint: disable=R0903

    def __init__(
        self,
        app: FastAPI,
        max_attempts: int,
        window_seconds: int,
        paths: set[str] | None = None,
    ):
        super().__init__(app)
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds
        self.paths = paths if paths is not None else code_submission_paths()
        self.cache = TTLCache(maxsize=10000, ttl=window_seconds)

    def _too_many(self, client_ip: str, path: str) -> Response:
        logger.warning(f"Code submission rate limit exceeded for IP: {client_ip} on {path}")
        return Response(
            status_code=429,
            content="Too many attempts, please try again later",
            headers={"Retry-After": str(self.window_seconds)}
        )

    async def dispatch(self, request: Request, call_next):
        """Middleware to rate limit the code submissions."""
        path = request.url.path
        if path not in self.paths:
            return await call_next(request)
        client_ip = request.client.host if request.client else "unknown"
        redis_client = getattr(request.app.state, "redis_client", None)

        if redis_client:
            key = f"verification-rate-limit:{client_ip}:{path}"
            try:
                pipe = redis_client.pipeline()
                pipe.incr(key)
                pipe.expire(key, self.window_seconds, nx=True)
                attempts, _ = pipe.execute()
                if attempts > self.max_attempts:
                    return self._too_many(client_ip, path)
                return await call_next(request)
            except RedisError:
                logger.error(
                    "Redis connection lost. Falling back to in-memory cache.")
                request.app.state.redis_client = None

        current_time = time.time()
        key = (client_ip, path)
        bucket = self.cache.get(key) or {
            'tokens': self.max_attempts, 'last_time': current_time}
        elapsed = current_time - bucket['last_time']
        bucket['tokens'] = min(
            self.max_attempts,
            bucket['tokens'] + elapsed * (self.max_attempts / self.window_seconds))
        bucket['last_time'] = current_time
        if bucket['tokens'] < 1:
            self.cache[key] = bucket
            return self._too_many(client_ip, path)
        bucket['tokens'] -= 1
        self.cache[key] = bucket
        return await call_next(request)
