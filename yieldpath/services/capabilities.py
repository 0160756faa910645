from __future__ import annotations

from typing import List, Optional, Sequence, Tuple

from yieldpath.models import ToolDef

ROUTER_TOOL_NAMES = ("ask_starknet", "ask_starknet/router")
YIELD_TOOL_NAMES = ("ask_starknet/troves_get_strategies", "ask_starknet/endurfi_get_lst_stats")
SYMBOL_TOOL_NAME = "ask_starknet/erc20_symbol"

# Routing providers in priority order: (label, tool name prefix)
ROUTING_PROVIDERS: Tuple[Tuple[str, str], ...] = (
    ("ask_starknet/ekubo*", "ask_starknet/ekubo"),
    ("ask_starknet/avnu*", "ask_starknet/avnu"),
)
ROUTER_FALLBACK_LABEL = "ask_starknet router fallback"


def is_router_tool(name: str) -> bool:
    return name in ROUTER_TOOL_NAMES


def find_router(tools: Sequence[ToolDef]) -> Optional[ToolDef]:
    return next((tool for tool in tools if is_router_tool(tool.name)), None)


def tool_names(tools: Sequence[ToolDef]) -> str:
    return ", ".join(tool.name for tool in tools) or "none"


def select_yield_tools(tools: Sequence[ToolDef]) -> Tuple[List[ToolDef], bool]:
    """Yield discovery tools, falling back to the router. The flag is True on fallback."""
    selected = [tool for tool in tools if tool.name in YIELD_TOOL_NAMES]
    if selected:
        return selected, False
    router = find_router(tools)
    return ([router], True) if router else ([], False)


def routing_provider_tools(tools: Sequence[ToolDef]) -> List[Tuple[str, List[ToolDef]]]:
    return [(label, [tool for tool in tools if tool.name.startswith(prefix)]) for label, prefix in ROUTING_PROVIDERS]
