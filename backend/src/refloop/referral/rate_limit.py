"""Fixed-window counters for the referral endpoints.

Counters live in a ``limits`` storage backend. ``memory://`` is only correct
for a single process; point ``RATE_LIMIT_STORAGE_URI`` at a shared store
(``redis://...``) when more than one instance serves traffic so the counter
is incremented atomically in one place.
"""

from limits import RateLimitItem, RateLimitItemPerHour, RateLimitItemPerMinute
from limits.storage import Storage, storage_from_string
from limits.strategies import FixedWindowRateLimiter

from refloop.logging_config import get_logger
from refloop.referral.errors import RateLimited
from refloop.settings import settings

logger = get_logger(__name__)

CLICKS_WINDOW = "clicks-per-hour"
COMPLETIONS_WINDOW = "completions-per-minute"


class WindowLimiter:
    """One named fixed window (e.g. 60 clicks per hour per fingerprint).

    The window opens on the first hit for a key; once it expires the next hit
    starts a fresh count at 1.
    """

    def __init__(self, name: str, item: RateLimitItem, storage: Storage):
        self.name = name
        self.item = item
        self.storage = storage
        self._strategy = FixedWindowRateLimiter(storage)

    def hit(self, key: str = "global") -> None:
        """Consume one slot for ``key``.

        Raises:
            RateLimited: If the window for ``key`` is exhausted
        """
        if not self._strategy.hit(self.item, self.name, key):
            logger.warning("rate_limit_exceeded", window=self.name, limit=str(self.item))
            raise RateLimited(window=self.name, limit=str(self.item))

    def remaining(self, key: str = "global") -> int:
        return self._strategy.get_window_stats(self.item, self.name, key).remaining


class ReferralLimiters:
    """Limiters used by the click tracker and referral completion."""

    def __init__(
        self,
        storage_uri: str | None = None,
        clicks_item: RateLimitItem | None = None,
        completions_item: RateLimitItem | None = None,
    ):
        self.storage = storage_from_string(storage_uri or settings.rate_limit_storage_uri)
        self.clicks = WindowLimiter(
            CLICKS_WINDOW,
            clicks_item or RateLimitItemPerHour(settings.clicks_per_hour),
            self.storage,
        )
        self.completions = WindowLimiter(
            COMPLETIONS_WINDOW,
            completions_item or RateLimitItemPerMinute(settings.completions_per_minute),
            self.storage,
        )

    def reset(self) -> None:
        """Clear every counter (admin tooling and tests)."""
        self.storage.reset()


# Shared instance
referral_limiters = ReferralLimiters()
