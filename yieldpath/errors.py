from __future__ import annotations

from typing import List, Sequence, Tuple


class YieldPathError(Exception):
    """Base class for failures that abort a yield path request."""


class ConfigurationError(YieldPathError):
    pass


class CapabilityUnavailableError(YieldPathError):
    """The capability provider exposes no tools usable for the current phase."""


class MaxIterationsExceededError(YieldPathError):
    pass


class AgentOutputError(YieldPathError):
    """The agent's final text could not be turned into usable data."""


class OutputValidationError(AgentOutputError):
    def __init__(self, prefix: str, issues: Sequence[Tuple[str, str]]):
        self.issues: List[Tuple[str, str]] = list(issues)
        details = "; ".join(f"{path}: {message}" for path, message in self.issues)
        super().__init__(f"{prefix}: {details}")


class AgentReportedError(AgentOutputError):
    """The agent answered with an errors array and no data."""

    def __init__(self, prefix: str, reasons: Sequence[str]):
        self.reasons: List[str] = list(reasons)
        super().__init__(f"{prefix}: {'; '.join(self.reasons)}")
