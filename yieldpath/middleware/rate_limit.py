from __future__ import annotations

import time
from typing import Callable

from fastapi import Request
from fastapi.responses import JSONResponse

from yieldpath.clients.redis import get_redis
from yieldpath.config import get_settings
from yieldpath.middleware.security import PROTECTED_PATHS


def rate_limit_key(client_ip: str, window_seconds: int, now: float) -> str:
    return f"rate:get_path:{client_ip}:{int(now // window_seconds)}"


async def rate_limiter(request: Request, call_next: Callable):
    if request.url.path not in PROTECTED_PATHS:
        return await call_next(request)

    settings = get_settings()
    window = settings.RATE_LIMIT_WINDOW_SECONDS
    client_ip = request.client.host if request.client else "unknown"
    key = rate_limit_key(client_ip, window, time.time())

    redis = await get_redis()
    current = await redis.incr(key)
    if current == 1:
        await redis.expire(key, window)
    if current > settings.RATE_LIMIT_MAX_REQUESTS:
        return JSONResponse(status_code=429, content={"detail": "Rate limit exceeded, try again later"})

    return await call_next(request)
