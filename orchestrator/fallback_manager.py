from models.errors import SearchProviderError
from orchestrator.routing_types import FallbackDecision, FallbackPolicy, NextAction


class FallbackManager:
    def __init__(self, policy: FallbackPolicy | None = None):
        self.policy = policy or FallbackPolicy()

    def decide(self, *, error: BaseException, policy: FallbackPolicy | None = None) -> FallbackDecision:
        policy = policy or self.policy

        if isinstance(error, policy.eligible_errors):
            return FallbackDecision(action=NextAction.FALLBACK, reason=_reason(error))

        return FallbackDecision(action=NextAction.PROPAGATE, reason=_reason(error))

    def may_attempt(self, *, fallback_index: int, policy: FallbackPolicy | None = None) -> bool:
        """Whether the ``fallback_index``-th (0-based) fallback provider may still be tried."""
        policy = policy or self.policy
        if policy.max_fallback_attempts is None:
            return True
        return fallback_index < policy.max_fallback_attempts


def _reason(error: BaseException) -> str:
    if isinstance(error, SearchProviderError):
        return error.code
    return "unclassified"
