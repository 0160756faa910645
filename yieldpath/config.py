from __future__ import annotations

import json
import logging
import os
from functools import lru_cache
from typing import Dict, List

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

logger = logging.getLogger(__name__)

DEFAULT_ASK_STARKNET_ARGS = ["-y", "@kasarlabs/ask-starknet-mcp"]

# Forwarded to the ask-starknet subprocess when set
TRANSPORT_ENV_KEYS = [
    "STARKNET_RPC_URL",
    "STARKNET_PRIVATE_KEY",
    "STARKNET_PUBLIC_ADDRESS",
    "STARKNET_ACCOUNT_ADDRESS",
    "MODEL_API_KEY",
    "ANTHROPIC_API_KEY",
    "GEMINI_API_KEY",
    "OPENAI_API_KEY",
    "MODEL_NAME",
    "LANGSMITH_API_KEY",
    "LANGSMITH_PROJECT",
    "LANGSMITH_ENABLED",
    "LANGSMITH_TRACING",
    "LANGCHAIN_API_KEY",
    "LANGCHAIN_PROJECT",
    "LANGCHAIN_TRACING_V2",
    "NODE_ENV",
]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Runtime
    ENV: str = Field(default="development")
    LOG_LEVEL: str = Field(default="INFO")
    HOST: str = Field(default="0.0.0.0")
    PORT: int = Field(default=3042)
    API_SECRET: str | None = None

    # Language model
    ANTHROPIC_API_KEY: str | None = None
    MODEL_API_KEY: str | None = None  # alias accepted by ask-starknet as well
    MODEL_NAME: str = Field(default="claude-3-5-sonnet-20241022")
    MODEL_MAX_TOKENS: int = Field(default=1024)

    # Caches
    CACHE_TTL_MS: int = Field(default=24 * 60 * 60 * 1000)

    # ask-starknet MCP subprocess
    ASK_STARKNET_COMMAND: str = Field(default="npx")
    ASK_STARKNET_ARGS: str | None = None
    STARKNET_RPC_URL: str | None = None
    STARKNET_PRIVATE_KEY: str | None = None
    STARKNET_PUBLIC_ADDRESS: str | None = None
    STARKNET_ACCOUNT_ADDRESS: str | None = None

    # Rate limiting
    REDIS_URL: str = Field(default="redis://localhost:6379/0")
    ENABLE_REDIS: bool = Field(default=False)
    RATE_LIMIT_MAX_REQUESTS: int = Field(default=50)
    RATE_LIMIT_WINDOW_SECONDS: int = Field(default=60)

    # Observability
    LOKI_URL: str = Field(default="http://localhost:3100")
    ENABLE_LOKI: bool = Field(default=False)
    LANGSMITH_ENABLED: bool = Field(default=False)
    LANGSMITH_API_KEY: str | None = None
    LANGSMITH_PROJECT: str | None = None
    LANGCHAIN_API_KEY: str | None = None
    LANGCHAIN_PROJECT: str | None = None
    LANGCHAIN_TRACING_V2: bool = Field(default=False)

    def model_api_key(self) -> str | None:
        return self.ANTHROPIC_API_KEY or self.MODEL_API_KEY

    def resolve_command_args(self) -> List[str]:
        raw = self.ASK_STARKNET_ARGS
        if not raw:
            return list(DEFAULT_ASK_STARKNET_ARGS)

        try:
            parsed = json.loads(raw)
        except ValueError:
            tokens = raw.split()
            if tokens:
                return tokens
        else:
            if isinstance(parsed, list) and all(isinstance(item, str) for item in parsed):
                return parsed

        logger.warning('ASK_STARKNET_ARGS is invalid; falling back to "-y @kasarlabs/ask-starknet-mcp"')
        return list(DEFAULT_ASK_STARKNET_ARGS)

    def transport_env(self) -> Dict[str, str]:
        env: Dict[str, str] = {}
        for key in TRANSPORT_ENV_KEYS:
            value = getattr(self, key, None)
            if isinstance(value, bool):
                value = "true" if value else None
            value = value or os.environ.get(key)
            if value:
                env[key] = str(value)

        if not env.get("MODEL_API_KEY") and env.get("ANTHROPIC_API_KEY"):
            env["MODEL_API_KEY"] = env["ANTHROPIC_API_KEY"]
        if not env.get("LANGCHAIN_API_KEY") and env.get("LANGSMITH_API_KEY"):
            env["LANGCHAIN_API_KEY"] = env["LANGSMITH_API_KEY"]
        if not env.get("LANGCHAIN_PROJECT") and env.get("LANGSMITH_PROJECT"):
            env["LANGCHAIN_PROJECT"] = env["LANGSMITH_PROJECT"]
        if env.get("LANGSMITH_ENABLED") == "true" or env.get("LANGSMITH_TRACING") == "true":
            env["LANGCHAIN_TRACING_V2"] = "true"
        return env

    def configure_tracing_env(self) -> None:
        """Export LangSmith tracing variables for the ask-starknet subprocess."""
        if not (self.LANGSMITH_ENABLED or self.LANGCHAIN_TRACING_V2):
            return

        api_key = self.LANGSMITH_API_KEY or self.LANGCHAIN_API_KEY
        project = self.LANGSMITH_PROJECT or self.LANGCHAIN_PROJECT or "yield-optimizer"
        if not api_key:
            logger.warning(
                "LangSmith is enabled but API key is missing. Set LANGSMITH_API_KEY or LANGCHAIN_API_KEY to enable tracing."
            )
            return

        os.environ["LANGCHAIN_API_KEY"] = api_key
        os.environ["LANGCHAIN_TRACING_V2"] = "true"
        os.environ["LANGCHAIN_PROJECT"] = project
        os.environ["LANGSMITH_API_KEY"] = api_key
        os.environ["LANGSMITH_PROJECT"] = project
        os.environ["LANGSMITH_TRACING"] = "true"
        logger.info(f"LangSmith tracing enabled for project: {project}")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
