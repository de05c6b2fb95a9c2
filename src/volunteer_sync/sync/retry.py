"""
Retry/backoff policy for whole-sync retries.

A retry re-runs the entire sync, never just the failing call. The policy
only answers two questions: should this error be retried, and how long to
wait before attempt n+1.
"""
import re
from dataclasses import dataclass

RETRYABLE_KEYWORDS = (
    "network",
    "timeout",
    "timed out",
    "connection",
    "rate limit",
    "quota",
    "temporary",
    "temporarily",
    "unavailable",
    "internal server error",
)

# Checked first: an "invalid credentials timeout" message is still an auth problem.
# Matched at word starts so a host like oauth2.googleapis.com is not an auth failure.
NON_RETRYABLE_RE = re.compile(
    r"\b(?:auth\b|authenticat|authoriz|unauthoriz|permission|forbidden|validation|invalid)"
)


@dataclass
class RetryPolicy:
    max_retries: int = 3
    base_delay_ms: int = 5_000
    max_delay_ms: int = 30_000

    def should_retry(self, error: BaseException) -> bool:
        """Classify an error as retryable.

        An explicit `retryable` attribute on the error wins; otherwise the
        message is matched against the keyword lists.
        """
        flag = getattr(error, "retryable", None)
        if flag is not None:
            return bool(flag)
        if isinstance(error, (TimeoutError, ConnectionError)):
            return True

        message = str(error).lower()
        if not message:
            return False
        if NON_RETRYABLE_RE.search(message):
            return False
        return any(word in message for word in RETRYABLE_KEYWORDS)

    def compute_delay(self, attempt: int) -> int:
        """Delay in ms before retry number `attempt` (1-based)."""
        attempt = max(1, attempt)
        delay = self.base_delay_ms * (2 ** (attempt - 1))
        return min(delay, self.max_delay_ms)
