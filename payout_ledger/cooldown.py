"""Per-user command cooldowns.

Advisory only: the map lives in process memory and resets on restart.
It throttles spam, it does not protect stock.
"""

import logging
import time
from typing import Callable, Dict, Hashable, Optional

from .config import settings
from .errors import CooldownActive

logger = logging.getLogger(__name__)


class CooldownTracker:
    """Expiring map of caller key -> cooldown expiry (monotonic seconds)."""

    def __init__(
        self,
        cooldown_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if cooldown_seconds is None:
            cooldown_seconds = settings.gen_cooldown_seconds
        self.cooldown_seconds = float(cooldown_seconds)
        self._clock = clock
        self._expiry: Dict[Hashable, float] = {}

    def remaining(self, key: Hashable) -> float:
        """Seconds left on the key's cooldown, 0 when it may run."""
        now = self._clock()
        self._prune(now)
        expires_at = self._expiry.get(key)
        if expires_at is None:
            return 0.0
        return max(expires_at - now, 0.0)

    def hit(self, key: Hashable) -> None:
        """Start the cooldown for a key.

        Raises:
            CooldownActive: the key is still cooling down.
        """
        left = self.remaining(key)
        if left > 0:
            raise CooldownActive(left)
        self._expiry[key] = self._clock() + self.cooldown_seconds

    def reset(self, key: Hashable) -> None:
        self._expiry.pop(key, None)

    def _prune(self, now: float) -> None:
        expired = [key for key, expires_at in self._expiry.items() if expires_at <= now]
        for key in expired:
            del self._expiry[key]
        if expired:
            logger.debug(f"Pruned {len(expired)} expired cooldown(s)")

    def __len__(self) -> int:
        return len(self._expiry)
