"""End-to-end yield path discovery.

A request runs through six phases in order: yield/route cache check,
capability initialization, input symbol resolution, yield discovery (only
when no live yield is cached), route discovery with provider fallback, and
finalization (validation plus cache writes). A route cache hit in the first
phase answers without any model or tool call.
"""
from __future__ import annotations

import asyncio
import logging
from functools import partial
from typing import Callable, List, Optional, Sequence, Tuple

from anthropic import AsyncAnthropic

from yieldpath.clients.capability import CapabilityClient, StdioCapabilityClient
from yieldpath.config import Settings
from yieldpath.errors import CapabilityUnavailableError, ConfigurationError
from yieldpath.models import UNKNOWN_SYMBOL, AgentOutput, Route, Token, ToolDef, YieldSnapshot
from yieldpath.services.cache import CapabilityCache
from yieldpath.services.capabilities import (
    ROUTER_FALLBACK_LABEL,
    find_router,
    routing_provider_tools,
    select_yield_tools,
    tool_names,
)
from yieldpath.services.conversation import MAX_ITERATIONS, AgentConversation, to_tool_param
from yieldpath.services.normalizer import parse_agent_output, parse_route_response, validate_output
from yieldpath.services.prompts import PromptBuilder
from yieldpath.services.routing import AttemptResult, RoutingStrategy, first_success
from yieldpath.services.tokens import TokenResolver
from yieldpath.utils.amounts import split_amount

logger = logging.getLogger(__name__)


class YieldPathOrchestrator:
    def __init__(
        self,
        cache: CapabilityCache,
        conversation: AgentConversation,
        client_factory: Callable[[], CapabilityClient],
        prompts: Optional[PromptBuilder] = None,
        max_iterations: int = MAX_ITERATIONS,
    ):
        self.cache = cache
        self.conversation = conversation
        self.prompts = prompts or PromptBuilder()
        self.tokens = TokenResolver(cache, conversation, self.prompts)
        self.max_iterations = max_iterations
        self._client_factory = client_factory
        self._client: Optional[CapabilityClient] = None
        self._client_lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings: Settings, cache: Optional[CapabilityCache] = None) -> "YieldPathOrchestrator":
        api_key = settings.model_api_key()
        if not api_key:
            raise ConfigurationError("ANTHROPIC_API_KEY or MODEL_API_KEY must be configured")

        conversation = AgentConversation(
            AsyncAnthropic(api_key=api_key), settings.MODEL_NAME, max_tokens=settings.MODEL_MAX_TOKENS
        )
        factory = partial(
            StdioCapabilityClient,
            command=settings.ASK_STARKNET_COMMAND,
            args=settings.resolve_command_args(),
            env=settings.transport_env(),
        )
        return cls(cache or CapabilityCache(ttl_ms=settings.CACHE_TTL_MS), conversation, factory)

    async def _get_client(self) -> CapabilityClient:
        if self._client is not None:
            return self._client
        async with self._client_lock:
            if self._client is None:
                client = self._client_factory()
                connect = getattr(client, "connect", None)
                if connect is not None:
                    await connect()
                self._client = client
        return self._client

    async def close(self) -> None:
        client, self._client = self._client, None
        close = getattr(client, "close", None)
        if close is not None:
            await close()

    async def find_best_yield_path(self, input_token_address: str, amount: str) -> AgentOutput:
        errors: List[str] = []

        # Phase 1: cached yield, then cached routes for that exact yield
        yield_data = self.cache.get_cached_yield()
        fingerprint: Optional[str] = None
        if yield_data is not None:
            logger.info(
                f"Using cached yield (cache age: {self.cache.get_yield_cache_age() or 0} minutes) - skipping yield.agent.prompt"
            )
            fingerprint = self.cache.compute_yield_fingerprint(yield_data)
            cached_route = self.cache.get_cached_route(input_token_address, amount, fingerprint)
            if cached_route is not None:
                logger.info(
                    f"Using cached route for token: {input_token_address} "
                    f"(cache age: {self.cache.route_cache_age(cached_route)} minutes) - skipping route.agent.prompt"
                )
                return self._build_final_response(yield_data, cached_route.routes, errors + cached_route.errors)
            logger.info(
                f"No cached route found for token: {input_token_address} and amount: {amount} - will compute routing only"
            )

        # Phase 2: capability provider
        client = await self._get_client()
        tools = await client.list_tools()
        if not tools:
            logger.error("No ask-starknet tools available. Available from router: none")
            raise CapabilityUnavailableError("No capabilities available. Available tools: none")

        # Phase 3: input token symbol
        input_symbol = self.cache.get_cached_token_symbol(input_token_address)
        if not input_symbol:
            lookup = await self.tokens.ensure_symbol(input_token_address, client, tools)
            errors.extend(lookup.errors)
            input_symbol = lookup.symbol

        # Phase 4: yield discovery
        if yield_data is None:
            logger.info("No cached yield found - executing yield.agent.prompt")
            yield_data = await self._discover_yield(input_token_address, client, tools)
            self.cache.set_cached_yield(yield_data)
            fingerprint = self.cache.compute_yield_fingerprint(yield_data)
        if fingerprint is None:
            fingerprint = self.cache.compute_yield_fingerprint(yield_data)

        # Phase 5: routes into the yield's deposit tokens
        routes, route_errors = await self._discover_routes(
            input_token_address, amount, yield_data, input_symbol, client, tools
        )
        errors.extend(route_errors)

        # Phase 6: finalize
        output = self._build_final_response(yield_data, routes, errors)
        self.cache.extract_and_cache_token_symbols(output)
        self.cache.set_cached_route(input_token_address, amount, fingerprint, output.routes, output.errors)
        return output

    def _build_final_response(self, yield_data: YieldSnapshot, routes: Sequence[Route], errors: Sequence[str]) -> AgentOutput:
        payload = {"yield": yield_data, "routes": list(routes)}
        if errors:
            payload["errors"] = list(errors)
        return validate_output(payload)

    async def _discover_yield(self, input_token_address: str, client: CapabilityClient, tools: Sequence[ToolDef]) -> YieldSnapshot:
        yield_tools, via_router = select_yield_tools(tools)
        if via_router:
            logger.warning("Yield discovery tools not individually exposed; falling back to ask_starknet router tool.")
        if not yield_tools:
            logger.error(f"Yield discovery tools not found. Allowed capabilities: {tool_names(tools)}")
            raise CapabilityUnavailableError(f"Yield discovery tools are unavailable. Available tools: {tool_names(tools)}")

        raw = await self.conversation.run(
            system_prompt=self.prompts.yield_prompt(),
            user_content={"inputToken": {"address": input_token_address}},
            tools=[to_tool_param(tool) for tool in yield_tools],
            client=client,
            max_iterations=self.max_iterations,
        )
        return parse_agent_output(raw).yield_

    async def _discover_routes(
        self,
        input_token_address: str,
        amount: str,
        yield_data: YieldSnapshot,
        input_symbol: Optional[str],
        client: CapabilityClient,
        tools: Sequence[ToolDef],
    ) -> Tuple[List[Route], List[str]]:
        errors: List[str] = []
        providers = routing_provider_tools(tools)
        router = find_router(tools)

        if not router and not any(provider_tools for _, provider_tools in providers):
            logger.warning("No routing tools available; returning yield data only.")
            return [], ["Routing skipped: no routing tools available."]

        targets: List[Token] = []
        for deposit_token in yield_data.deposit_tokens():
            resolved, resolve_errors = await self.tokens.resolve_swap_token(deposit_token, client, tools)
            errors.extend(resolve_errors)
            targets.append(resolved)

        try:
            splits = split_amount(amount, len(targets))
        except ValueError as e:
            logger.error(str(e))
            errors.append(f"Routing skipped: {e}")
            return [], errors

        attempt = partial(
            self._route_with_tools,
            input_token_address=input_token_address,
            input_symbol=input_symbol,
            amount=amount,
            targets=targets,
            splits=splits,
            client=client,
        )
        strategies: List[RoutingStrategy] = [
            (label, partial(attempt, provider_tools, label)) for label, provider_tools in providers
        ]
        if router is not None:
            strategies.append((ROUTER_FALLBACK_LABEL, partial(attempt, [router], ROUTER_FALLBACK_LABEL)))

        winner, attempt_errors = await first_success(strategies)
        errors.extend(attempt_errors)
        if winner is None:
            logger.warning("No routing tools produced a route; returning yield data only.")
            errors.append("Routing skipped: no route provider produced a valid route.")
            return [], errors
        return winner.routes, errors

    async def _route_with_tools(
        self,
        tools: Sequence[ToolDef],
        label: str,
        *,
        input_token_address: str,
        input_symbol: Optional[str],
        amount: str,
        targets: Sequence[Token],
        splits: Sequence[str],
        client: CapabilityClient,
    ) -> AttemptResult:
        if not tools:
            logger.warning(f"Routing attempt skipped for {label}: no tools available.")
            return AttemptResult.failed(label, [f"Routing skipped for {label}: no tools available."])

        if label == ROUTER_FALLBACK_LABEL:
            logger.warning("Routing providers failed or unavailable; attempting ask_starknet router fallback.")

        tool_params = [to_tool_param(tool) for tool in tools]
        input_token = {"address": input_token_address, "symbol": input_symbol or UNKNOWN_SYMBOL}
        routes: List[Route] = []
        errors: List[str] = []

        for index, target in enumerate(targets):
            logger.info(
                f"Executing route.agent.prompt for route {index + 1}/{len(targets)}: "
                f"{input_token_address} -> {target.address} ({label})"
            )
            try:
                raw = await self.conversation.run(
                    system_prompt=self.prompts.route_prompt(input_token_address, target, index, len(targets)),
                    user_content={
                        "inputToken": input_token,
                        "targetToken": target.model_dump(),
                        "amount": splits[index],
                        "totalAmount": amount,
                        "routeIndex": index,
                        "totalRoutes": len(targets),
                    },
                    tools=tool_params,
                    client=client,
                    max_iterations=self.max_iterations,
                )
                target_routes, target_errors = parse_route_response(raw, splits[index])
            except Exception as e:
                logger.warning(f"Routing attempt via {label} failed: {e}")
                errors.append(f"Routing attempt via {label} failed: {e}")
                return AttemptResult.failed(label, errors)

            errors.extend(target_errors)
            routes.extend(target_routes)

        if not routes:
            errors.append(f"Routing with {label} tools returned no routes.")
            return AttemptResult.failed(label, errors)
        return AttemptResult(label=label, success=True, routes=routes, errors=errors)
