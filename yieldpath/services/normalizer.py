"""Turn free-form agent replies into validated ``AgentOutput`` data.

Agents wrap their JSON in prose and have answered in several shapes over
time (``selected_strategy``/``swap_route(s)`` as well as the canonical
``yield``/``route(s)``). Each known shape is a variant tried in a fixed
priority order; all of them converge on the canonical dict before the
pydantic schema and the cross-field checks run.
"""
from __future__ import annotations

import copy
import json
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from pydantic import BaseModel, ValidationError

from yieldpath.errors import AgentOutputError, AgentReportedError, OutputValidationError
from yieldpath.models import (
    DEFAULT_DECIMALS,
    DEFAULT_SLIPPAGE_BPS,
    UNKNOWN_SYMBOL,
    AgentOutput,
    Route,
    is_zero_address,
    same_address,
)

logger = logging.getLogger(__name__)

SNIPPET_LIMIT = 200
PLACEHOLDER_ADDRESS = "0x0"

Issue = Tuple[str, str]


def _snippet(text: str) -> str:
    return f"{text[:SNIPPET_LIMIT]}..." if len(text) > SNIPPET_LIMIT else text


def string_errors(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, str)]


def parse_agent_json(raw: str) -> Any:
    trimmed = raw.strip()
    start = trimmed.find("{")
    end = trimmed.rfind("}")

    if start == -1 or end == -1 or end <= start:
        logger.error(f"Agent did not return JSON: {trimmed}")
        raise AgentOutputError(f"Agent response is not valid JSON. Response: {_snippet(trimmed)}")

    candidate = trimmed[start : end + 1]
    try:
        return json.loads(candidate)
    except ValueError as e:
        logger.error(f"Failed to parse agent JSON: {candidate} ({e})")
        raise AgentOutputError(f"Agent response JSON parse failed. Response: {_snippet(candidate)}") from e


# Shape variants


def _placeholder_token(address: str = PLACEHOLDER_ADDRESS) -> Dict[str, Any]:
    return {"address": address, "symbol": UNKNOWN_SYMBOL, "decimals": DEFAULT_DECIMALS}


def _expand_token_ref(value: Any) -> Any:
    if isinstance(value, str):
        return _placeholder_token(value)
    if isinstance(value, dict):
        return value
    return _placeholder_token()


def _from_selected_strategy(strategy: Dict[str, Any]) -> Dict[str, Any]:
    deposit = strategy.get("deposit_token")
    if isinstance(deposit, list):
        deposit_tokens = deposit
    elif deposit:
        deposit_tokens = [deposit]
    else:
        deposit_tokens = [_placeholder_token()]

    if "snapshot_at" in strategy:
        snapshot_at = strategy["snapshot_at"]
    else:
        snapshot_at = datetime.now(timezone.utc).isoformat()
    return {
        "protocol": strategy.get("strategy_name") or strategy.get("protocol") or UNKNOWN_SYMBOL,
        "apy_pct": strategy.get("apy_pct") or 0,
        "deposit_token": deposit_tokens,
        "pool_or_contract_address": strategy.get("contract_address") or strategy.get("pool_or_contract_address") or None,
        "source": strategy.get("source") or "troves",
        "snapshot_at": snapshot_at,
    }


def _from_swap_route(route: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "from_token": _expand_token_ref(route.get("from_token")),
        "to_token": _expand_token_ref(route.get("to_token")),
        "amount_in": route.get("amount_in") or "0",
        "min_amount_out": route.get("min_amount_out"),
        "slippage_bps": route.get("slippage_bps") or DEFAULT_SLIPPAGE_BPS,
        "hops": route.get("hops") or [],
        "quote_provider": route.get("quote_provider"),
        "quote_valid_until": route.get("quote_valid_until"),
    }


def _swap_route_entry(route: Any) -> Any:
    return _from_swap_route(route) if isinstance(route, dict) else route


Variant = Tuple[str, Callable[[Any], bool], Callable[[Any], Any]]

YIELD_VARIANTS: Sequence[Variant] = (
    ("selected_strategy", lambda v: isinstance(v, dict), _from_selected_strategy),
    ("yield", lambda v: isinstance(v, dict), lambda v: v),
)

ROUTE_VARIANTS: Sequence[Variant] = (
    ("swap_routes", lambda v: isinstance(v, list), lambda v: [_swap_route_entry(r) for r in v]),
    ("swap_route", lambda v: isinstance(v, dict), lambda v: [_from_swap_route(v)]),
    ("routes", lambda v: isinstance(v, list), list),
    ("route", lambda v: isinstance(v, dict), lambda v: [v]),
)


def _first_variant(data: Dict[str, Any], variants: Sequence[Variant]) -> Optional[Any]:
    for key, matches, convert in variants:
        if key in data and matches(data[key]):
            return convert(data[key])
    return None


def transform_agent_response(data: Any) -> Any:
    if not isinstance(data, dict):
        return data

    transformed: Dict[str, Any] = {}
    yield_data = _first_variant(data, YIELD_VARIANTS)
    if yield_data is not None:
        transformed["yield"] = yield_data

    routes = _first_variant(data, ROUTE_VARIANTS)
    if routes:
        transformed["routes"] = routes

    if data.get("errors"):
        transformed["errors"] = data["errors"]
    return transformed


# Defaults


def _apply_token_defaults(token: Any) -> None:
    if isinstance(token, dict):
        if not token.get("symbol"):
            token["symbol"] = UNKNOWN_SYMBOL
        if token.get("decimals") is None:
            token["decimals"] = DEFAULT_DECIMALS


def _apply_route_defaults(route: Any) -> None:
    if not isinstance(route, dict):
        return
    if not route.get("hops"):
        route["hops"] = []
    if not route.get("slippage_bps"):
        route["slippage_bps"] = DEFAULT_SLIPPAGE_BPS
    _apply_token_defaults(route.get("from_token"))
    _apply_token_defaults(route.get("to_token"))


def apply_defaults(data: Any) -> Any:
    if not isinstance(data, dict):
        return data

    obj = copy.deepcopy(data)
    if isinstance(obj.get("routes"), list):
        obj.pop("route", None)
    elif isinstance(obj.get("route"), dict):
        obj["routes"] = [obj.pop("route")]
    else:
        obj["routes"] = []

    for route in obj["routes"]:
        _apply_route_defaults(route)

    yield_obj = obj.get("yield")
    if isinstance(yield_obj, dict) and yield_obj.get("deposit_token"):
        deposit = yield_obj["deposit_token"]
        if not isinstance(deposit, list):
            deposit = [deposit] if isinstance(deposit, dict) else []
        for token in deposit:
            _apply_token_defaults(token)
        yield_obj["deposit_token"] = deposit

    if not obj.get("errors"):
        obj["errors"] = []
    return obj


# Validation


def _loc(prefix: Sequence[Any], loc: Sequence[Any]) -> str:
    return ".".join(str(part) for part in (*prefix, *loc))


def _schema_issues(model: type[BaseModel], payload: Any, prefix: Sequence[Any] = ()) -> Tuple[Optional[Any], List[Issue]]:
    try:
        return model.model_validate(payload), []
    except ValidationError as e:
        return None, [(_loc(prefix, err["loc"]), err["msg"]) for err in e.errors()]


def same_asset_issues(route: Route, prefix: Sequence[Any]) -> List[Issue]:
    if not route.is_same_asset():
        return []

    issues: List[Issue] = []
    if route.hops:
        issues.append((_loc(prefix, ["hops"]), "Route hops must be empty when from_token and to_token match"))
    if route.min_amount_out is None:
        issues.append(
            (_loc(prefix, ["min_amount_out"]), "min_amount_out is required when from_token and to_token match")
        )
    elif route.min_amount_out != route.amount_in:
        issues.append(
            (_loc(prefix, ["min_amount_out"]), "min_amount_out must equal amount_in when from_token and to_token match")
        )
    return issues


def output_issues(output: AgentOutput) -> List[Issue]:
    issues: List[Issue] = []
    for index, token in enumerate(output.yield_.deposit_tokens()):
        if is_zero_address(token.address):
            path = _loc(["yield", "deposit_token", index], ["address"])
            issues.append((path, "Invalid deposit_token address (cannot be 0x0)"))

    for index, route in enumerate(output.routes):
        issues.extend(same_asset_issues(route, ["routes", index]))
    return issues


def validate_output(payload: Any, prefix: str = "Agent response failed schema validation") -> AgentOutput:
    output, issues = _schema_issues(AgentOutput, payload)
    if output is not None:
        issues = output_issues(output)
    if issues:
        logger.error(f"{prefix}: {issues}")
        raise OutputValidationError(prefix, issues)
    return output


def _normalized(raw: str) -> Any:
    return apply_defaults(transform_agent_response(parse_agent_json(raw)))


def parse_agent_output(raw: str) -> AgentOutput:
    payload = _normalized(raw)

    if isinstance(payload, dict) and not payload.get("yield"):
        reasons = string_errors(payload.get("errors"))
        if reasons:
            logger.error(f"Agent returned errors without yield data: {reasons}")
            raise AgentReportedError("Unable to determine best yield strategy", reasons)

    return validate_output(payload)


def normalize_route(route: Route, expected_amount: str) -> Route:
    """Pin ``amount_in`` to the requested amount; same-asset routes become no-op transfers."""
    update: Dict[str, Any] = {"amount_in": expected_amount, "hops": list(route.hops)}
    if same_address(route.from_token.address, route.to_token.address):
        update["hops"] = []
        update["min_amount_out"] = expected_amount
    elif route.min_amount_out is None:
        logger.warning(
            f"Route missing min_amount_out for {route.from_token.address.lower()} -> "
            f"{route.to_token.address.lower()}; leaving undefined."
        )
    return route.model_copy(update=update)


def parse_route_response(raw: str, expected_amount: str) -> Tuple[List[Route], List[str]]:
    payload = _normalized(raw)
    if not isinstance(payload, dict):
        logger.error(f"Route agent response is not an object: {payload!r}")
        raise AgentOutputError("Route agent response is not an object.")

    issues: List[Issue] = []
    routes: List[Route] = []
    for index, candidate in enumerate(payload["routes"]):
        route, route_issues = _schema_issues(Route, candidate, ["routes", index])
        issues.extend(route_issues)
        if route is not None:
            routes.append(normalize_route(route, expected_amount))
    if issues:
        logger.error(f"Route agent response failed schema validation: {issues}")
        raise OutputValidationError("Route agent response failed schema validation", issues)

    errors = string_errors(payload.get("errors"))
    if not routes:
        if errors:
            logger.error(f"Route agent returned errors without route data: {errors}")
            raise AgentReportedError("Unable to determine swap route", errors)
        logger.error(f"Route agent did not return any route data: {payload}")
        raise AgentOutputError("Route agent response missing route information.")
    return routes, errors
