"""SQLiteRateGate: quota counters that stay correct across worker processes.

Consuming a unit is one conditional UPDATE (``used < limit``), so two workers
reviewing for the same account can never both take the last unit.
"""

from __future__ import annotations

import logging
import threading
import time

from prsentry_core.gate import UNLIMITED, QuotaDecision, RateGate
from prsentry_store.sqlite import connect

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS quota_usage (
    account_id  TEXT NOT NULL,
    period      TEXT NOT NULL,
    used        INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (account_id, period)
);
"""


class SQLiteRateGate(RateGate):
    def __init__(self, db_path: str = ".prsentry.db", plan_limits: dict[str, int] | None = None, clock=time.time):
        super().__init__(plan_limits, clock)
        self._lock = threading.Lock()
        self._conn = connect(db_path)
        self._conn.executescript(_SCHEMA)
        self._conn.commit()

    def try_consume(self, account_id: str, plan_tier: str) -> QuotaDecision:
        limit = self.limit_for(plan_tier)
        period = self.period_for(plan_tier)
        with self._lock, self._conn:
            self._conn.execute(
                "INSERT OR IGNORE INTO quota_usage (account_id, period, used) VALUES (?, ?, 0)",
                (account_id, period),
            )
            if limit == UNLIMITED:
                cur = self._conn.execute(
                    "UPDATE quota_usage SET used = used + 1 WHERE account_id=? AND period=?",
                    (account_id, period),
                )
            else:
                cur = self._conn.execute(
                    "UPDATE quota_usage SET used = used + 1 WHERE account_id=? AND period=? AND used < ?",
                    (account_id, period, limit),
                )
            granted = cur.rowcount == 1
            used = self._used(account_id, period)
        if not granted:
            logger.info("Quota denied for %s (%d/%d in %s)", account_id, used, limit, period)
        return QuotaDecision(granted=granted, period=period, used=used, limit=limit)

    def rollback(self, account_id: str, period: str) -> None:
        with self._lock, self._conn:
            self._conn.execute(
                "UPDATE quota_usage SET used = used - 1 WHERE account_id=? AND period=? AND used > 0",
                (account_id, period),
            )

    def usage(self, account_id: str, plan_tier: str) -> QuotaDecision:
        limit = self.limit_for(plan_tier)
        period = self.period_for(plan_tier)
        with self._lock:
            used = self._used(account_id, period)
        return QuotaDecision(granted=limit == UNLIMITED or used < limit, period=period, used=used, limit=limit)

    def close(self) -> None:
        self._conn.close()

    def _used(self, account_id: str, period: str) -> int:
        row = self._conn.execute(
            "SELECT used FROM quota_usage WHERE account_id=? AND period=?", (account_id, period)
        ).fetchone()
        return row["used"] if row else 0
