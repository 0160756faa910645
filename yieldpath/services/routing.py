from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple

from yieldpath.models import Route

logger = logging.getLogger(__name__)


@dataclass
class AttemptResult:
    label: str
    success: bool
    routes: List[Route] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @classmethod
    def failed(cls, label: str, errors: Sequence[str]) -> "AttemptResult":
        return cls(label=label, success=False, errors=list(errors))


RoutingStrategy = Tuple[str, Callable[[], Awaitable[AttemptResult]]]


async def first_success(strategies: Sequence[RoutingStrategy]) -> Tuple[Optional[AttemptResult], List[str]]:
    """Run routing strategies in priority order and stop at the first success.

    Returns the winning attempt (or None) together with the errors collected
    from every attempt that ran, the winner's included.
    """
    errors: List[str] = []
    for label, attempt in strategies:
        result = await attempt()
        errors.extend(result.errors)
        if result.success:
            logger.info(f"Routing succeeded via {label} with {len(result.routes)} route(s)")
            return result, errors
        logger.debug(f"Routing via {label} did not succeed")
    return None, errors
