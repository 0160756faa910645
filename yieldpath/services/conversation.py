from __future__ import annotations

import json
import logging
from enum import Enum
from typing import Any, Dict, List, Sequence

from anthropic import AsyncAnthropic

from yieldpath.clients.capability import CapabilityClient
from yieldpath.errors import MaxIterationsExceededError
from yieldpath.models import ToolDef

logger = logging.getLogger(__name__)

MAX_ITERATIONS = 12
DEFAULT_MAX_TOKENS = 1024


class TurnState(str, Enum):
    AWAITING_MODEL = "awaiting_model_response"
    AWAITING_TOOLS = "awaiting_tool_results"


def to_tool_param(tool: ToolDef) -> Dict[str, Any]:
    schema: Dict[str, Any] = dict(tool.parameters or {})
    if not isinstance(schema.get("type"), str):
        schema["type"] = "object"
    if not isinstance(schema.get("properties"), dict):
        schema["properties"] = {}
    return {"name": tool.name, "description": tool.description or "", "input_schema": schema}


class AgentConversation:
    """Bounded tool-use loop between the language model and the capability provider.

    The conversation alternates strictly between waiting for a model response
    and waiting for the requested tool results. A model turn without tool use
    ends the run; running out of turns is a hard failure.
    """

    def __init__(self, llm: AsyncAnthropic, model: str, max_tokens: int = DEFAULT_MAX_TOKENS):
        self.llm = llm
        self.model = model
        self.max_tokens = max_tokens

    async def run(
        self,
        system_prompt: str,
        user_content: Any,
        tools: Sequence[Dict[str, Any]],
        client: CapabilityClient,
        max_iterations: int = MAX_ITERATIONS,
    ) -> str:
        content = user_content if isinstance(user_content, str) else json.dumps(user_content)
        messages: List[Dict[str, Any]] = [{"role": "user", "content": content}]

        state = TurnState.AWAITING_MODEL
        turns = 0
        tool_uses: List[Any] = []
        while state is TurnState.AWAITING_TOOLS or turns < max_iterations:
            if state is TurnState.AWAITING_MODEL:
                response = await self.llm.messages.create(
                    model=self.model,
                    system=system_prompt,
                    max_tokens=self.max_tokens,
                    messages=messages,
                    tools=list(tools),
                    metadata={"user_id": "yield-optimizer"},
                )
                turns += 1
                tool_uses = [block for block in response.content if block.type == "tool_use"]
                if not tool_uses:
                    return "\n".join(block.text for block in response.content if block.type == "text")

                logger.debug(f"Turn {turns}: model requested {[t.name for t in tool_uses]}")
                messages.append({"role": "assistant", "content": response.content})
                state = TurnState.AWAITING_TOOLS
            else:
                results = [await self._call_tool(tool_use, client) for tool_use in tool_uses]
                messages.append({"role": "user", "content": results})
                state = TurnState.AWAITING_MODEL

        raise MaxIterationsExceededError("Agent exceeded maximum iterations without producing a result")

    async def _call_tool(self, tool_use: Any, client: CapabilityClient) -> Dict[str, Any]:
        args = tool_use.input if isinstance(tool_use.input, dict) else {}
        try:
            result = await client.call_tool(tool_use.name, args)
        except Exception as e:
            logger.error(f"Tool {tool_use.name} failed: {e}")
            return {
                "type": "tool_result",
                "tool_use_id": tool_use.id,
                "is_error": True,
                "content": str(e) or "Unknown tool error",
            }
        return {
            "type": "tool_result",
            "tool_use_id": tool_use.id,
            "content": json.dumps(result, default=str),
        }
