from dataclasses import dataclass
from enum import Enum

from models.errors import FALLBACK_ELIGIBLE_ERRORS


class NextAction(str, Enum):
    FALLBACK = "fallback"
    PROPAGATE = "propagate"


@dataclass(frozen=True)
class FallbackDecision:
    action: NextAction
    reason: str


@dataclass(frozen=True)
class FallbackPolicy:
    # Error classes that justify trying another provider
    eligible_errors: tuple[type[BaseException], ...] = FALLBACK_ELIGIBLE_ERRORS
    # None walks every available fallback provider
    max_fallback_attempts: int | None = None


@dataclass(frozen=True)
class AttemptRecord:
    provider: str
    ok: bool
    elapsed_ms: int
    error_code: str | None = None
