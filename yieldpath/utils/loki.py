from __future__ import annotations

import json
import logging
import time
from typing import Any, Dict, Optional

import httpx

from yieldpath.config import get_settings

logger = logging.getLogger(__name__)

LOKI_TIMEOUT = httpx.Timeout(2.0, connect=2.0)

_client: Optional[httpx.AsyncClient] = None


def _get_client() -> httpx.AsyncClient:
    global _client
    if _client is None:
        _client = httpx.AsyncClient(timeout=LOKI_TIMEOUT)
    return _client


def build_loki_payload(level: str, message: str, env: str, extra: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    ts_ns = str(time.time_ns())
    return {
        "streams": [
            {
                "stream": {"service": "yield-path", "env": env, "level": level},
                "values": [[ts_ns, json.dumps({"message": message, **(extra or {})}, default=str)]],
            }
        ]
    }


async def loki_log(level: str, message: str, extra: Optional[Dict[str, Any]] = None) -> None:
    """Push one structured log line to Loki. Never raises."""
    settings = get_settings()
    if not settings.ENABLE_LOKI:
        return

    url = f"{settings.LOKI_URL.rstrip('/')}/api/logs"
    try:
        resp = await _get_client().post(url, json=build_loki_payload(level, message, settings.ENV, extra))
        if resp.status_code >= 400:
            logger.debug(f"Loki rejected log line: {resp.status_code}")
    except httpx.HTTPError as e:
        logger.debug(f"Loki push failed: {e}")


async def close_loki_client() -> None:
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None
