"""
Per-model request quotas.

Each model id owns one row in ``quota_records`` holding the timestamps of
recent requests (sliding one-minute window) and a daily counter that resets
at midnight in a fixed timezone. The provider resets its own free-tier
quotas at Pacific midnight, so the default zone is ``America/Los_Angeles``.

All writes are single SQL statements so concurrent admission checks never
lose updates. ``record_request`` must run right after an allowed
``check_admission`` and before the provider call; otherwise a burst of
requests could all pass the check before any of them is counted.
"""

import logging
import math
from datetime import date, datetime, time, timedelta, timezone
from typing import Callable, List, Optional
from zoneinfo import ZoneInfo

from core.config import settings
from core.database import pool
from models.quota import AdmissionResult, RateLimits

logger = logging.getLogger(__name__)

WINDOW = timedelta(seconds=60)
MAX_STORED_REQUESTS = 100

FETCH_OR_CREATE_SQL = """
    INSERT INTO quota_records (model, requests, daily_count, last_reset_date)
    VALUES (%s, '{}', 0, %s)
    ON CONFLICT (model) DO UPDATE SET model = EXCLUDED.model
    RETURNING requests, daily_count, last_reset_date
"""

RESET_DAY_SQL = """
    UPDATE quota_records
    SET daily_count = 0, last_reset_date = %s
    WHERE model = %s AND last_reset_date <> %s
"""

RECORD_SQL = """
    INSERT INTO quota_records (model, requests, daily_count, last_reset_date)
    VALUES (%s, ARRAY[%s::timestamptz], 1, %s)
    ON CONFLICT (model) DO UPDATE SET
        requests = array_append(quota_records.requests, %s::timestamptz),
        daily_count = CASE
            WHEN quota_records.last_reset_date = EXCLUDED.last_reset_date THEN quota_records.daily_count + 1
            ELSE 1
        END,
        last_reset_date = EXCLUDED.last_reset_date
"""

PRUNE_SQL = """
    UPDATE quota_records
    SET requests = ARRAY(SELECT t FROM unnest(requests) AS t WHERE t >= %s ORDER BY t)
    WHERE model = %s AND cardinality(requests) > %s
"""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class QuotaLedger:
    def __init__(self, tz_name: Optional[str] = None, clock: Callable[[], datetime] = _utcnow):
        self.tz = ZoneInfo(tz_name or settings.QUOTA_TIMEZONE)
        self.clock = clock

    # -------------------------------------------------------------------------
    # Calendar helpers
    # -------------------------------------------------------------------------

    def today(self, now: datetime) -> str:
        """Calendar date of ``now`` in the quota timezone, as YYYY-MM-DD."""
        return now.astimezone(self.tz).date().isoformat()

    def seconds_until_midnight(self, now: datetime) -> int:
        local = now.astimezone(self.tz)
        next_day: date = local.date() + timedelta(days=1)
        midnight = datetime.combine(next_day, time.min, tzinfo=self.tz)
        # Compare in UTC, same-tzinfo subtraction ignores DST offsets
        remaining = (midnight.astimezone(timezone.utc) - now.astimezone(timezone.utc)).total_seconds()
        return max(1, math.ceil(remaining))

    @staticmethod
    def recent_requests(requests: List[datetime], now: datetime) -> List[datetime]:
        cutoff = now - WINDOW
        return [ts for ts in map(_as_aware, requests or []) if ts >= cutoff]

    # -------------------------------------------------------------------------
    # Ledger operations
    # -------------------------------------------------------------------------

    async def check_admission(self, model: str, limits: RateLimits) -> AdmissionResult:
        """Decide whether a call to ``model`` is allowed right now. Does not count the call."""
        now = self.clock()
        today = self.today(now)

        async with pool.connection() as conn:
            async with conn.cursor() as cur:
                await cur.execute(FETCH_OR_CREATE_SQL, (model, today))
                row = await cur.fetchone()
                requests, daily_count, last_reset_date = row if row else ([], 0, today)

                if last_reset_date != today:
                    # Guarded on the stored date so concurrent resets apply once
                    await cur.execute(RESET_DAY_SQL, (today, model, today))
                    daily_count = 0
                    logger.info(f"Quota day rolled over for {model}: {last_reset_date} -> {today}")
            await conn.commit()

        recent = self.recent_requests(requests, now)

        if len(recent) >= limits.per_minute:
            oldest = min(recent)
            retry_after = math.ceil((oldest + WINDOW - now).total_seconds())
            result = AdmissionResult(allowed=False, reason="perMinute", retry_after=max(1, retry_after))
        elif (daily_count or 0) >= limits.per_day:
            result = AdmissionResult(allowed=False, reason="perDay", retry_after=self.seconds_until_midnight(now))
        else:
            return AdmissionResult(allowed=True)

        logger.warning(
            f"Quota denied for {model}: {result.reason}, retry in {result.retry_after}s",
            extra={"structured_data": {"model": model, "reason": result.reason, "retry_after": result.retry_after}},
        )
        return result

    async def record_request(self, model: str) -> None:
        """
        Count one call against ``model``: append a timestamp and bump the daily counter.

        A record landing on a new quota day (the check ran before midnight)
        starts that day's counter at 1 instead of carrying yesterday's total.
        """
        now = self.clock()
        today = self.today(now)

        async with pool.connection() as conn:
            async with conn.cursor() as cur:
                await cur.execute(RECORD_SQL, (model, now, today, now))
            await conn.commit()

        await self._prune(model, now)

    async def _prune(self, model: str, now: datetime) -> None:
        """Drop timestamps outside the window once the stored list grows past the bound."""
        try:
            async with pool.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(PRUNE_SQL, (now - WINDOW, model, MAX_STORED_REQUESTS))
                await conn.commit()
        except Exception as e:
            logger.warning(f"Quota cleanup failed for {model}: {e}")


def chat_limits() -> RateLimits:
    return RateLimits(per_minute=settings.CHAT_RATE_PER_MINUTE, per_day=settings.CHAT_RATE_PER_DAY)


def title_limits() -> RateLimits:
    return RateLimits(per_minute=settings.TITLE_RATE_PER_MINUTE, per_day=settings.TITLE_RATE_PER_DAY)


quota_ledger = QuotaLedger()
