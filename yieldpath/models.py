from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

HEX_ADDRESS_PATTERN = r"^0x[0-9a-fA-F]+$"
INTEGER_PATTERN = r"^\d+$"

UNKNOWN_SYMBOL = "UNKNOWN"
DEFAULT_DECIMALS = 18
DEFAULT_SLIPPAGE_BPS = 50


def is_zero_address(address: Any) -> bool:
    if not isinstance(address, str):
        return False
    lowered = address.lower()
    return lowered.startswith("0x") and len(lowered) > 2 and set(lowered[2:]) == {"0"}


def same_address(left: str, right: str) -> bool:
    return left.lower() == right.lower()


class Token(BaseModel):
    symbol: str = Field(..., min_length=1)
    address: str = Field(..., pattern=HEX_ADDRESS_PATTERN)
    decimals: int = Field(..., ge=0, le=36)


class RouteToken(BaseModel):
    symbol: Optional[str] = None
    address: str = Field(..., pattern=HEX_ADDRESS_PATTERN)
    decimals: Optional[int] = None


class Hop(BaseModel):
    dex: Literal["AVNU", "Ekubo"]
    pool: Optional[str] = Field(default=None, min_length=1)
    quote_out: Optional[str] = Field(default=None, pattern=INTEGER_PATTERN)


class Route(BaseModel):
    from_token: RouteToken
    to_token: RouteToken
    amount_in: str = Field(..., pattern=INTEGER_PATTERN, description="Raw integer amount in from_token units")
    min_amount_out: Optional[str] = Field(default=None, pattern=INTEGER_PATTERN)
    slippage_bps: Optional[int] = Field(default=None, ge=1, le=1000)
    hops: List[Hop] = Field(default_factory=list)
    quote_provider: Optional[Literal["avnu", "ekubo", "unavailable"]] = None
    quote_valid_until: Optional[str] = Field(default=None, min_length=1)

    def is_same_asset(self) -> bool:
        return same_address(self.from_token.address, self.to_token.address)


class YieldSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    protocol: str = Field(..., min_length=1)
    apy_pct: float = Field(..., allow_inf_nan=False)
    deposit_token: List[Token] = Field(..., min_length=1)
    pool_or_contract_address: Optional[str] = Field(default=None, pattern=HEX_ADDRESS_PATTERN)
    source: Literal["troves", "endurfi"]
    snapshot_at: Optional[str] = Field(default=None, min_length=1)

    @field_validator("deposit_token", mode="before")
    @classmethod
    def _single_token_as_list(cls, value: Any) -> Any:
        # A lone token is accepted and stored as a one-element list
        return [value] if isinstance(value, (dict, Token)) else value

    def deposit_tokens(self) -> List[Token]:
        return list(self.deposit_token)


class AgentOutput(BaseModel):
    """Canonical discovery result: one yield snapshot plus the routes into it."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    yield_: YieldSnapshot = Field(..., alias="yield")
    routes: List[Route] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class YieldCacheEntry(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    yield_: YieldSnapshot = Field(..., alias="yield")
    timestamp: float = Field(..., description="Epoch milliseconds")


class RouteCacheEntry(BaseModel):
    routes: List[Route]
    errors: List[str] = Field(default_factory=list)
    yield_fingerprint: str
    timestamp: float = Field(..., description="Epoch milliseconds")


class TokenSymbolCacheEntry(BaseModel):
    symbol: str
    timestamp: float = Field(..., description="Epoch milliseconds")


class ToolDef(BaseModel):
    name: str
    description: Optional[str] = None
    parameters: Optional[Dict[str, Any]] = None


class SymbolLookup(BaseModel):
    symbol: Optional[str] = None
    errors: List[str] = Field(default_factory=list)
    used_prompt: bool = False


class GetPathRequest(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    address: Optional[str] = None
    amount: Optional[str] = None


class GetPathResponse(BaseModel):
    success: bool
    tokenAddress: str
    amount: str
    result: Dict[str, Any]
