from __future__ import annotations

import asyncio
import logging
from contextlib import AsyncExitStack
from typing import Any, Dict, List, Optional, Protocol

from mcp import ClientSession, StdioServerParameters, types
from mcp.client.stdio import stdio_client

from yieldpath.models import ToolDef

logger = logging.getLogger(__name__)


class CapabilityClient(Protocol):
    async def list_tools(self) -> List[ToolDef]: ...

    async def call_tool(self, name: str, args: Dict[str, Any]) -> Any: ...


class StdioCapabilityClient:
    """ask-starknet MCP server spoken to over a stdio subprocess.

    The MCP session is entered and exited by one background task, so the
    connection can be opened lazily inside a request and closed at shutdown.
    Concurrent first callers share a single connection attempt.
    """

    def __init__(
        self,
        command: str,
        args: List[str],
        env: Optional[Dict[str, str]] = None,
        client_name: str = "yield-optimizer-ask-starknet",
        client_version: str = "1.0.0",
    ):
        self.command = command
        self.args = args
        self.env = env
        self.client_name = client_name
        self.client_version = client_version
        self._session: Optional[ClientSession] = None
        self._task: Optional[asyncio.Task] = None
        self._stopping: Optional[asyncio.Event] = None
        self._connect_lock = asyncio.Lock()

    @property
    def connected(self) -> bool:
        return self._session is not None

    async def connect(self) -> None:
        if self._session is not None:
            return
        async with self._connect_lock:
            if self._session is not None:
                return
            logger.info(f"Connecting to ask-starknet via {self.command} {' '.join(self.args)}".strip())
            ready: asyncio.Future = asyncio.get_running_loop().create_future()
            self._stopping = asyncio.Event()
            self._task = asyncio.create_task(self._run(ready, self._stopping))
            try:
                await ready
            except Exception:
                self._task = None
                self._stopping = None
                raise
            logger.info("ask-starknet MCP transport connected")

    async def _run(self, ready: asyncio.Future, stopping: asyncio.Event) -> None:
        params = StdioServerParameters(command=self.command, args=self.args, env=self.env)
        try:
            async with AsyncExitStack() as stack:
                read, write = await stack.enter_async_context(stdio_client(params))
                session = await stack.enter_async_context(
                    ClientSession(
                        read,
                        write,
                        client_info=types.Implementation(name=self.client_name, version=self.client_version),
                    )
                )
                await session.initialize()
                self._session = session
                ready.set_result(None)
                await stopping.wait()
        except Exception as e:
            if not ready.done():
                ready.set_exception(e)
            else:
                logger.exception(f"ask-starknet MCP session terminated: {e}")
        finally:
            self._session = None

    def _require_session(self) -> ClientSession:
        if self._session is None:
            raise RuntimeError("ask-starknet MCP client is not connected")
        return self._session

    async def list_tools(self) -> List[ToolDef]:
        await self.connect()
        result = await self._require_session().list_tools()
        return [
            ToolDef(name=tool.name, description=tool.description, parameters=tool.inputSchema or None)
            for tool in result.tools
        ]

    async def call_tool(self, name: str, args: Dict[str, Any]) -> Any:
        await self.connect()
        result = await self._require_session().call_tool(name, arguments=args)
        return result.model_dump(mode="json", exclude_none=True)

    async def close(self) -> None:
        task, stopping = self._task, self._stopping
        self._task = None
        self._stopping = None
        if task is None or stopping is None:
            return
        stopping.set()
        try:
            await task
        except Exception as e:
            logger.error(f"Failed to shut down ask-starknet client cleanly: {e}")
