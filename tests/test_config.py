import logging
import os

import pytest

from yieldpath.config import DEFAULT_ASK_STARKNET_ARGS, Settings
from yieldpath.utils.loki import build_loki_payload, loki_log
from yieldpath.utils.logging import setup_logging


def test_defaults():
    settings = Settings()
    assert settings.PORT == 3042
    assert settings.CACHE_TTL_MS == 24 * 60 * 60 * 1000
    assert settings.model_api_key() is None


def test_anthropic_key_preferred_over_alias():
    assert Settings(ANTHROPIC_API_KEY="a", MODEL_API_KEY="m").model_api_key() == "a"
    assert Settings(MODEL_API_KEY="m").model_api_key() == "m"


@pytest.mark.parametrize(
    "raw,expected",
    [
        (None, DEFAULT_ASK_STARKNET_ARGS),
        ('["-y", "ask-starknet@1.2.0"]', ["-y", "ask-starknet@1.2.0"]),
        ("-y  ask-starknet", ["-y", "ask-starknet"]),
        ('{"not": "a list"}', DEFAULT_ASK_STARKNET_ARGS),
        ("[1, 2]", DEFAULT_ASK_STARKNET_ARGS),
    ],
)
def test_command_args(raw, expected):
    assert Settings(ASK_STARKNET_ARGS=raw).resolve_command_args() == expected


def test_transport_env_aliases(monkeypatch):
    for key in ("MODEL_API_KEY", "LANGCHAIN_API_KEY", "LANGCHAIN_PROJECT", "LANGSMITH_TRACING", "LANGCHAIN_TRACING_V2"):
        monkeypatch.delenv(key, raising=False)
    settings = Settings(
        ANTHROPIC_API_KEY="sk-ant",
        STARKNET_RPC_URL="https://rpc.example",
        LANGSMITH_ENABLED=True,
        LANGSMITH_API_KEY="ls-key",
        LANGSMITH_PROJECT="proj",
    )

    env = settings.transport_env()

    assert env["MODEL_API_KEY"] == "sk-ant"
    assert env["STARKNET_RPC_URL"] == "https://rpc.example"
    assert env["LANGCHAIN_API_KEY"] == "ls-key"
    assert env["LANGCHAIN_PROJECT"] == "proj"
    assert env["LANGCHAIN_TRACING_V2"] == "true"


def test_transport_env_omits_unset_keys(monkeypatch):
    monkeypatch.delenv("STARKNET_PRIVATE_KEY", raising=False)
    assert "STARKNET_PRIVATE_KEY" not in Settings().transport_env()


def test_tracing_env_exported(monkeypatch):
    # Registered with monkeypatch so the exported values are removed afterwards
    for key in (
        "LANGCHAIN_API_KEY",
        "LANGCHAIN_PROJECT",
        "LANGCHAIN_TRACING_V2",
        "LANGSMITH_API_KEY",
        "LANGSMITH_PROJECT",
        "LANGSMITH_TRACING",
    ):
        monkeypatch.delenv(key, raising=False)

    Settings(LANGSMITH_ENABLED=True, LANGSMITH_API_KEY="ls-key", LANGSMITH_PROJECT="yp").configure_tracing_env()

    assert os.environ["LANGCHAIN_API_KEY"] == "ls-key"
    assert os.environ["LANGCHAIN_TRACING_V2"] == "true"
    assert os.environ["LANGSMITH_PROJECT"] == "yp"


def test_tracing_without_key_is_skipped(monkeypatch, caplog):
    monkeypatch.delenv("LANGCHAIN_TRACING_V2", raising=False)
    monkeypatch.delenv("LANGSMITH_API_KEY", raising=False)
    monkeypatch.delenv("LANGCHAIN_API_KEY", raising=False)
    with caplog.at_level(logging.WARNING):
        Settings(LANGSMITH_ENABLED=True).configure_tracing_env()
    assert "LANGCHAIN_TRACING_V2" not in os.environ
    assert "API key is missing" in caplog.text


def test_setup_logging_quiets_third_party_loggers():
    setup_logging("debug")
    assert logging.getLogger().level == logging.DEBUG
    assert logging.getLogger("httpx").level == logging.WARNING


def test_loki_payload_shape():
    payload = build_loki_payload("INFO", "request", "test", {"path": "/get_path"})
    stream = payload["streams"][0]
    assert stream["stream"] == {"service": "yield-path", "env": "test", "level": "INFO"}
    assert stream["values"][0][1] == '{"message": "request", "path": "/get_path"}'


@pytest.mark.asyncio
async def test_loki_disabled_is_noop():
    await loki_log("INFO", "ignored")
