from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Tuple

from yieldpath.clients.capability import CapabilityClient
from yieldpath.errors import AgentOutputError
from yieldpath.models import DEFAULT_DECIMALS, UNKNOWN_SYMBOL, SymbolLookup, Token, ToolDef
from yieldpath.services.cache import CapabilityCache
from yieldpath.services.capabilities import SYMBOL_TOOL_NAME, find_router
from yieldpath.services.conversation import AgentConversation, to_tool_param
from yieldpath.services.normalizer import parse_agent_json, string_errors
from yieldpath.services.prompts import PromptBuilder

logger = logging.getLogger(__name__)


def select_symbol_tools(tools: Sequence[ToolDef]) -> List[ToolDef]:
    direct = [tool for tool in tools if tool.name == SYMBOL_TOOL_NAME]
    if direct:
        return direct
    router = find_router(tools)
    return [router] if router else []


def _clean_symbol(value: object) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def parse_token_symbol_response(raw: str, expected_address: str) -> Tuple[Optional[str], List[str]]:
    payload = parse_agent_json(raw)
    if not isinstance(payload, dict):
        raise AgentOutputError("Token symbol agent response is not an object.")

    errors = string_errors(payload.get("errors"))
    symbol: Optional[str] = None

    token = payload.get("token")
    if isinstance(token, dict):
        address = token.get("address")
        if isinstance(address, str) and address.lower() != expected_address.lower():
            logger.warning(f"Token symbol response address mismatch: expected {expected_address}, received {address}")
        symbol = _clean_symbol(token.get("symbol"))

    symbol = symbol or _clean_symbol(payload.get("symbol"))
    if symbol:
        return symbol, errors
    return None, errors or ["Token symbol not returned."]


class TokenResolver:
    """Resolves token addresses to symbols: cache first, then a token-symbol agent run."""

    def __init__(self, cache: CapabilityCache, conversation: AgentConversation, prompts: PromptBuilder):
        self.cache = cache
        self.conversation = conversation
        self.prompts = prompts

    async def ensure_symbol(self, token_address: str, client: CapabilityClient, tools: Sequence[ToolDef]) -> SymbolLookup:
        cached = self.cache.get_cached_token_symbol(token_address)
        if cached:
            return SymbolLookup(symbol=cached)

        symbol_tools = select_symbol_tools(tools)
        if not symbol_tools:
            logger.warning("Token symbol tools unavailable; skipping symbol lookup.")
            return SymbolLookup(errors=["Token symbol lookup skipped: no symbol-capable tools available."])

        try:
            raw = await self.conversation.run(
                system_prompt=self.prompts.token_symbol_prompt(token_address),
                user_content={"token": {"address": token_address}},
                tools=[to_tool_param(tool) for tool in symbol_tools],
                client=client,
            )
            symbol, errors = parse_token_symbol_response(raw, token_address)
        except Exception as e:
            message = f"Token symbol lookup failed: {e}"
            logger.warning(message)
            return SymbolLookup(errors=[message], used_prompt=True)

        if symbol and symbol != UNKNOWN_SYMBOL:
            self.cache.set_cached_token_symbol(token_address, symbol)
        return SymbolLookup(symbol=symbol, errors=errors, used_prompt=True)

    async def resolve_swap_token(
        self, token: Token, client: CapabilityClient, tools: Sequence[ToolDef]
    ) -> Tuple[Token, List[str]]:
        errors: List[str] = []
        symbol: Optional[str] = token.symbol

        if not symbol or symbol == UNKNOWN_SYMBOL:
            lookup = await self.ensure_symbol(token.address, client, tools)
            errors.extend(lookup.errors)
            symbol = lookup.symbol or self.cache.get_cached_token_symbol(token.address) or symbol

        final_symbol = symbol.strip() if symbol and symbol.strip() else UNKNOWN_SYMBOL
        decimals = token.decimals if isinstance(token.decimals, int) else DEFAULT_DECIMALS
        resolved = token.model_copy(update={"symbol": final_symbol, "decimals": decimals})

        if final_symbol != UNKNOWN_SYMBOL:
            self.cache.set_cached_token_symbol(resolved.address, final_symbol)
        return resolved, errors
