"""Anti-automation checks for public submissions.

Three independent checks cut low-effort spam before any field is looked at:

- Honeypot: a field hidden from humans; any value in it means a bot filled
  the form.
- Minimum dwell time: the client sends the epoch-millis timestamp at which
  the form was rendered; a submission arriving sooner than the configured
  threshold is bot-speed.
- Per-IP rate limit: at most N submissions per IP in a rolling window.

None of these is a security boundary. A legitimate user with a skewed clock
or aggressive autofill can be rejected; that is a known limitation and the
thresholds are configuration, not code.

The verdict carries the reason a check tripped so it can be logged for the
operator. The reason is never put in the payload returned to the submitter.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
import logging
from typing import Optional

from dateutil import tz
from limits import RateLimitItemPerSecond
from limits.storage import MemoryStorage, Storage
from limits.strategies import MovingWindowRateLimiter

from formforge.config import Settings, get_settings

logger = logging.getLogger(__name__)

REASON_HONEYPOT = "honeypot"
REASON_TOO_FAST = "too_fast"
REASON_NO_TIMESTAMP = "missing_load_timestamp"
REASON_RATE_LIMITED = "rate_limited"
REASON_BAD_TIMESTAMP = "invalid_load_timestamp"
RATE_LIMIT_NAMESPACE = "submission"

EPOCH = datetime(1970, 1, 1, tzinfo=tz.UTC)


@dataclass(frozen=True)
class GuardVerdict:
    """Outcome of the anti-automation checks.

    Attributes:
        passed: Whether the submission may proceed to field validation
        reason: Internal reason code when a check tripped
        elapsed_ms: Measured dwell time, when a load timestamp was supplied
    """
    passed: bool
    reason: Optional[str] = None
    elapsed_ms: Optional[int] = None


def epoch_millis_to_datetime(value: int) -> datetime:
    return EPOCH + timedelta(milliseconds=value)


def elapsed_millis(load_timestamp: int, received_at: datetime) -> int:
    """Milliseconds between form render and submission receipt.

    Negative when the client clock is ahead of the server.

    Raises:
        OverflowError: If the timestamp lies outside the representable range
    """
    delta = received_at - epoch_millis_to_datetime(load_timestamp)
    return delta // timedelta(milliseconds=1)


class SubmissionRateLimiter:
    """Moving-window limit on submissions per client key.

    Backed by ``limits``. The default ``MemoryStorage`` is per-process and
    lost on restart; pass a shared ``Storage`` to count across workers.
    Expired keys are evicted by the storage.
    """

    def __init__(
        self,
        limit: int,
        window_seconds: int,
        storage: Optional[Storage] = None,
    ):
        self.limit = limit
        self.window_seconds = window_seconds
        self.storage = storage if storage is not None else MemoryStorage()
        self._strategy = MovingWindowRateLimiter(self.storage)
        self._item = RateLimitItemPerSecond(limit, window_seconds) if limit > 0 else None

    @property
    def enabled(self) -> bool:
        return self._item is not None

    def allow(self, key: str) -> bool:
        """Record one attempt for ``key`` and report whether it is within the limit."""
        if not self.enabled:
            return True
        return self._strategy.hit(self._item, RATE_LIMIT_NAMESPACE, key)

    def reset(self, key: Optional[str] = None) -> None:
        if not self.enabled:
            return
        if key is None:
            self.storage.reset()
        else:
            self._strategy.clear(self._item, RATE_LIMIT_NAMESPACE, key)


class AntiAutomationGuard:
    """Runs the honeypot, dwell-time and rate-limit checks.

    Examples:
        >>> guard = AntiAutomationGuard(Settings(min_dwell_ms=1000, rate_limit_per_window=0))
        >>> guard.check(honeypot="http://spam.example").passed
        False
        >>> guard.check(honeypot="").passed
        True
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        rate_limiter: Optional[SubmissionRateLimiter] = None,
    ):
        self.settings = settings or get_settings()
        if rate_limiter is None:
            rate_limiter = SubmissionRateLimiter(
                self.settings.rate_limit_per_window,
                self.settings.rate_limit_window_seconds,
            )
        self.rate_limiter = rate_limiter

    def check(
        self,
        honeypot: Optional[str] = None,
        load_timestamp: Optional[int] = None,
        received_at: Optional[datetime] = None,
        client_ip: Optional[str] = None,
    ) -> GuardVerdict:
        """Run every check; the first one that trips decides the verdict."""
        received_at = received_at or datetime.now(tz.UTC)

        if client_ip and not self.rate_limiter.allow(client_ip):
            return self._reject(REASON_RATE_LIMITED, client_ip)

        if self.settings.honeypot_enabled and honeypot:
            return self._reject(REASON_HONEYPOT, client_ip)

        if load_timestamp is None:
            if self.settings.require_load_timestamp:
                return self._reject(REASON_NO_TIMESTAMP, client_ip)
            return GuardVerdict(passed=True)

        try:
            elapsed = elapsed_millis(load_timestamp, received_at)
        except OverflowError:
            return self._reject(REASON_BAD_TIMESTAMP, client_ip)
        if elapsed < self.settings.min_dwell_ms:
            return self._reject(REASON_TOO_FAST, client_ip, elapsed)
        return GuardVerdict(passed=True, elapsed_ms=elapsed)

    def _reject(
        self, reason: str, client_ip: Optional[str], elapsed: Optional[int] = None
    ) -> GuardVerdict:
        if elapsed is not None:
            logger.warning(
                "Bot detected: %s (%dms < %dms) from %s",
                reason, elapsed, self.settings.min_dwell_ms, client_ip or "unknown",
            )
        else:
            logger.warning("Bot detected: %s from %s", reason, client_ip or "unknown")
        return GuardVerdict(passed=False, reason=reason, elapsed_ms=elapsed)


__all__ = [
    "GuardVerdict",
    "AntiAutomationGuard",
    "SubmissionRateLimiter",
    "elapsed_millis",
    "epoch_millis_to_datetime",
]
