from __future__ import annotations

import hmac
import logging
from typing import Callable, Optional

from fastapi import Request
from fastapi.responses import JSONResponse

from yieldpath.config import get_settings

logger = logging.getLogger(__name__)

PROTECTED_PATHS = {"/get_path"}


def _presented_secret(request: Request) -> Optional[str]:
    secret = request.headers.get("x-api-secret")
    if secret:
        return secret
    authorization = request.headers.get("authorization")
    if authorization:
        return authorization.replace("Bearer ", "", 1)
    return None


async def require_api_secret(request: Request, call_next: Callable):
    if request.url.path not in PROTECTED_PATHS:
        return await call_next(request)

    valid_secret = get_settings().API_SECRET
    if not valid_secret:
        logger.error("API_SECRET is not defined in environment variables")
        return JSONResponse(status_code=401, content={"detail": "Server configuration error"})

    secret = _presented_secret(request)
    if not secret or not hmac.compare_digest(secret, valid_secret):
        return JSONResponse(status_code=401, content={"detail": "Unauthorized"})
    return await call_next(request)
