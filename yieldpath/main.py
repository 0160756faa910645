from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request

from yieldpath.config import get_settings
from yieldpath.utils.logging import setup_logging
from yieldpath.models import GetPathRequest, GetPathResponse
from yieldpath.services.orchestrator import YieldPathOrchestrator

app = FastAPI(title="Starknet Yield Path Finder", version="1.0.0")

logger = logging.getLogger(__name__)

STARKNET_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{1,64}$")

# Middleware: API secret guard and rate limiting, plus Loki logging
from yieldpath.middleware.security import require_api_secret
from yieldpath.middleware.rate_limit import rate_limiter
from yieldpath.utils.loki import close_loki_client, loki_log
from yieldpath.clients.redis import close_redis

SETTINGS = get_settings()

@app.middleware("http")
async def _security(request, call_next):
    return await require_api_secret(request, call_next)

if SETTINGS.ENABLE_REDIS:
    @app.middleware("http")
    async def _rate_limit(request, call_next):
        return await rate_limiter(request, call_next)

@app.middleware("http")
async def _loki_logger(request, call_next):
    response = await call_next(request)
    await loki_log(
        "INFO",
        "request",
        extra={
            "path": str(request.url.path),
            "method": request.method,
            "status": response.status_code,
            "client_ip": request.client.host if request.client else None,
        },
    )
    return response


def is_valid_starknet_address(address: Optional[str]) -> bool:
    # 0x followed by 1-64 hex chars; leading zeros may be dropped
    return isinstance(address, str) and bool(STARKNET_ADDRESS_RE.match(address))


def get_orchestrator(request: Request) -> YieldPathOrchestrator:
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Yield path service is not initialized")
    return orchestrator


@app.on_event("startup")
async def startup_event() -> None:
    settings = get_settings()
    setup_logging(settings.LOG_LEVEL)
    settings.configure_tracing_env()
    # Missing model credentials abort startup
    app.state.orchestrator = YieldPathOrchestrator.from_settings(settings)
    logger.info(f"✅ Yield path finder ready – model: {settings.MODEL_NAME}")


@app.on_event("shutdown")
async def shutdown_event() -> None:
    orchestrator = getattr(app.state, "orchestrator", None)
    if orchestrator is not None:
        await orchestrator.close()
        app.state.orchestrator = None
    if get_settings().ENABLE_REDIS:
        await close_redis()
    await close_loki_client()


@app.get("/health")
async def health():
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}


@app.post("/get_path", response_model=GetPathResponse)
async def post_get_path(
    req: Optional[GetPathRequest] = None,
    orchestrator: YieldPathOrchestrator = Depends(get_orchestrator),
):
    req = req or GetPathRequest()
    if not req.address:
        raise HTTPException(status_code=400, detail="Address is required")
    if not is_valid_starknet_address(req.address):
        raise HTTPException(status_code=400, detail="Invalid Starknet address format")
    if not req.amount:
        raise HTTPException(status_code=400, detail="Amount is required")

    logger.info(f"Finding optimal yield path for token: {req.address} with amount: {req.amount}")
    try:
        output = await orchestrator.find_best_yield_path(req.address, req.amount)
    except Exception as e:
        logger.exception(f"Error finding yield path: {e}")
        raise HTTPException(status_code=400, detail=f"Failed to find optimal yield path: {e}") from e

    return GetPathResponse(success=True, tokenAddress=req.address, amount=req.amount, result=output.to_payload())
