import threading
from collections import defaultdict
from datetime import datetime
from typing import Any, Dict, Optional

from models.search_result import TokenUsage


class TokenTracker:
    """
    Tracks token usage across provider searches, in total and per provider.
    Cached results are not counted; they cost nothing.
    """

    def __init__(self):
        """Initialize a new TokenTracker instance with zeroed counters."""
        self._lock = threading.Lock()
        self.reset()

    def reset(self) -> None:
        """Reset all token counters to zero."""
        with self._lock:
            self.total_prompt_tokens = 0
            self.total_completion_tokens = 0
            self.total_tokens = 0
            self.requests = 0
            self.by_provider: Dict[str, int] = defaultdict(int)

    def update(self, usage: Optional[TokenUsage], provider: Optional[str] = None) -> None:
        """
        Update token counters with usage from a provider search.

        Args:
            usage: Token usage reported by the provider (ignored when None)
            provider: Provider that served the search
        """
        if usage is None:
            return

        with self._lock:
            self.requests += 1
            self.total_prompt_tokens += usage.prompt_tokens
            self.total_completion_tokens += usage.completion_tokens
            self.total_tokens += usage.total_tokens
            if provider:
                self.by_provider[provider] += usage.total_tokens

    def get_summary(self) -> Dict[str, Any]:
        """
        Get a summary of token usage.

        Returns:
            A dictionary containing token usage statistics and timestamp.
        """
        with self._lock:
            return {
                'requests': self.requests,
                'prompt_tokens': self.total_prompt_tokens,
                'completion_tokens': self.total_completion_tokens,
                'total_tokens': self.total_tokens,
                'by_provider': dict(self.by_provider),
                'timestamp': datetime.now().isoformat()
            }

    def format_summary(self) -> str:
        """
        Format the token usage summary as a human-readable string.

        Returns:
            A formatted string with token usage information.
        """
        stats = self.get_summary()
        lines = [
            f"Requests: {stats['requests']}",
            f"Prompt tokens: {stats['prompt_tokens']}",
            f"Completion tokens: {stats['completion_tokens']}",
            f"Total tokens: {stats['total_tokens']}",
        ]
        for provider, tokens in sorted(stats['by_provider'].items()):
            lines.append(f"  {provider}: {tokens}")
        return "\n".join(lines)
