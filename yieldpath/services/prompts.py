from __future__ import annotations

from pathlib import Path
from typing import Dict

from yieldpath.models import UNKNOWN_SYMBOL, Token

PROMPTS_DIR = Path(__file__).resolve().parent.parent / "prompts"


def _with_context(prompt: str, *lines: str) -> str:
    return "\n\n".join([prompt, "\n".join(["Context:", *lines])])


class PromptBuilder:
    """System prompts for the yield, route and token-symbol agent runs."""

    def __init__(self, prompts_dir: Path = PROMPTS_DIR):
        self.prompts_dir = prompts_dir
        self._templates: Dict[str, str] = {}

    def _read(self, name: str) -> str:
        if name not in self._templates:
            self._templates[name] = (self.prompts_dir / name).read_text(encoding="utf-8").strip()
        return self._templates[name]

    def yield_prompt(self) -> str:
        return self._read("yield.agent.prompt.md")

    def token_symbol_prompt(self, token_address: str) -> str:
        return _with_context(self._read("token-symbol.agent.prompt.md"), f"- Token address: {token_address}")

    def route_prompt(self, input_token_address: str, target_token: Token, route_index: int, total_routes: int) -> str:
        return _with_context(
            self._read("route.agent.prompt.md"),
            f"- Input token address: {input_token_address}",
            f"- Target token address: {target_token.address}",
            f"- Target token symbol: {target_token.symbol or UNKNOWN_SYMBOL}",
            f"- Route index: {route_index + 1} of {total_routes}",
        )
