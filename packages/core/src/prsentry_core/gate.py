"""Rate/plan gate: admits at most the plan's review allowance per period.

The quota counter is the only state that workers processing different jobs
mutate concurrently, so every implementation must consume a unit with a
single atomic increment-with-ceiling operation.
"""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone

from prsentry_core.errors import ValidationError

logger = logging.getLogger(__name__)

UNLIMITED = -1

# Review units per billing period. The trial allowance is lifetime, not monthly.
DEFAULT_PLAN_LIMITS: dict[str, int] = {
    "trial": 3,
    "hobby": 15,
    "pro": 100,
}
LIFETIME_PLANS = frozenset({"trial"})
LIFETIME_PERIOD = "lifetime"


@dataclass(frozen=True)
class QuotaDecision:
    granted: bool
    period: str
    used: int
    limit: int

    @property
    def remaining(self) -> int:
        if self.limit == UNLIMITED:
            return UNLIMITED
        return max(0, self.limit - self.used)


def billing_period(plan_tier: str, now: float | None = None) -> str:
    if plan_tier in LIFETIME_PLANS:
        return LIFETIME_PERIOD
    moment = datetime.fromtimestamp(now if now is not None else time.time(), tz=timezone.utc)
    return moment.strftime("%Y-%m")


class RateGate(ABC):
    """Quota check consumed synchronously by the review pipeline."""

    def __init__(self, plan_limits: dict[str, int] | None = None, clock=time.time):
        self.plan_limits = {**DEFAULT_PLAN_LIMITS, **(plan_limits or {})}
        self._clock = clock

    def limit_for(self, plan_tier: str) -> int:
        if plan_tier not in self.plan_limits:
            raise ValidationError(f"Unknown plan tier: {plan_tier!r}")
        return self.plan_limits[plan_tier]

    def period_for(self, plan_tier: str) -> str:
        return billing_period(plan_tier, self._clock())

    @abstractmethod
    def try_consume(self, account_id: str, plan_tier: str) -> QuotaDecision:
        """Atomically take one review unit if the plan allows it."""

    @abstractmethod
    def rollback(self, account_id: str, period: str) -> None:
        """Return one unit previously taken in ``period``."""

    @abstractmethod
    def usage(self, account_id: str, plan_tier: str) -> QuotaDecision:
        """Report current usage without consuming anything."""

    def close(self) -> None:
        """Release resources. Default is a no-op."""


class MemoryRateGate(RateGate):
    """Process-local gate. A lock makes check-and-increment a single step."""

    def __init__(self, plan_limits: dict[str, int] | None = None, clock=time.time):
        super().__init__(plan_limits, clock)
        self._lock = threading.Lock()
        self._used: dict[tuple[str, str], int] = {}

    def try_consume(self, account_id: str, plan_tier: str) -> QuotaDecision:
        limit = self.limit_for(plan_tier)
        period = self.period_for(plan_tier)
        key = (account_id, period)
        with self._lock:
            used = self._used.get(key, 0)
            if limit != UNLIMITED and used >= limit:
                logger.info("Quota denied for %s (%d/%d in %s)", account_id, used, limit, period)
                return QuotaDecision(granted=False, period=period, used=used, limit=limit)
            self._used[key] = used + 1
            return QuotaDecision(granted=True, period=period, used=used + 1, limit=limit)

    def rollback(self, account_id: str, period: str) -> None:
        key = (account_id, period)
        with self._lock:
            used = self._used.get(key, 0)
            if used > 0:
                self._used[key] = used - 1

    def usage(self, account_id: str, plan_tier: str) -> QuotaDecision:
        limit = self.limit_for(plan_tier)
        period = self.period_for(plan_tier)
        with self._lock:
            used = self._used.get((account_id, period), 0)
        return QuotaDecision(granted=limit == UNLIMITED or used < limit, period=period, used=used, limit=limit)
