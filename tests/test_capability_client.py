from contextlib import asynccontextmanager
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from yieldpath.clients import capability
from yieldpath.clients.capability import StdioCapabilityClient


class FakeSession:
    instances = []

    def __init__(self, read, write, client_info=None):
        self.client_info = client_info
        self.initialized = False
        self.exited = False
        FakeSession.instances.append(self)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        self.exited = True
        return False

    async def initialize(self):
        self.initialized = True

    async def list_tools(self):
        tool = SimpleNamespace(
            name="ask_starknet/avnu_get_quote",
            description="Quote a swap",
            inputSchema={"type": "object", "properties": {"amount": {"type": "string"}}},
        )
        return SimpleNamespace(tools=[tool])

    async def call_tool(self, name, arguments=None):
        result = MagicMock()
        result.model_dump.return_value = {"content": [{"type": "text", "text": f"{name}:{arguments}"}], "isError": False}
        return result


@pytest.fixture
def fake_transport(monkeypatch):
    launched = []

    @asynccontextmanager
    async def fake_stdio_client(params):
        launched.append(params)
        yield object(), object()

    FakeSession.instances = []
    monkeypatch.setattr(capability, "stdio_client", fake_stdio_client)
    monkeypatch.setattr(capability, "ClientSession", FakeSession)
    return launched


@pytest.mark.asyncio
async def test_lists_and_calls_tools(fake_transport):
    client = StdioCapabilityClient("npx", ["-y", "@kasarlabs/ask-starknet-mcp"], env={"STARKNET_RPC_URL": "http://rpc"})

    tools = await client.list_tools()
    result = await client.call_tool("ask_starknet/avnu_get_quote", {"amount": "1"})

    assert [t.name for t in tools] == ["ask_starknet/avnu_get_quote"]
    assert tools[0].parameters["properties"] == {"amount": {"type": "string"}}
    assert result["content"][0]["text"] == "ask_starknet/avnu_get_quote:{'amount': '1'}"
    assert fake_transport[0].command == "npx"
    assert fake_transport[0].env == {"STARKNET_RPC_URL": "http://rpc"}
    assert FakeSession.instances[0].client_info.name == "yield-optimizer-ask-starknet"

    await client.close()
    assert FakeSession.instances[0].exited is True
    assert client.connected is False


@pytest.mark.asyncio
async def test_connect_is_idempotent(fake_transport):
    client = StdioCapabilityClient("npx", [])
    await client.connect()
    await client.connect()
    assert len(fake_transport) == 1
    assert client.connected
    await client.close()


@pytest.mark.asyncio
async def test_connect_failure_propagates(monkeypatch):
    @asynccontextmanager
    async def broken_stdio_client(params):
        raise FileNotFoundError("npx not found")
        yield

    monkeypatch.setattr(capability, "stdio_client", broken_stdio_client)
    client = StdioCapabilityClient("npx", [])

    with pytest.raises(FileNotFoundError, match="npx not found"):
        await client.connect()
    assert client.connected is False
    await client.close()


@pytest.mark.asyncio
async def test_close_without_connect():
    await StdioCapabilityClient("npx", []).close()
