from datetime import datetime, timedelta, timezone

import pytest
from expects import be_none, be_true, contain, equal, expect

from core.config import settings
from models.quota import RateLimits
from services.quota import RECORD_SQL, RESET_DAY_SQL, QuotaLedger, chat_limits, title_limits

# 2024-03-15 18:00 UTC is 11:00 in Los Angeles (PDT, UTC-7)
NOW = datetime(2024, 3, 15, 18, 0, 0, tzinfo=timezone.utc)
TODAY = "2024-03-15"
LIMITS = RateLimits(per_minute=9, per_day=19)


@pytest.fixture
def ledger():
    return QuotaLedger(tz_name="America/Los_Angeles", clock=lambda: NOW)


def _executed_sql(mock_db_cursor):
    return [c.args[0] for c in mock_db_cursor.execute.call_args_list]


def test_default_limits_follow_settings():
    expect(chat_limits()).to(equal(RateLimits(per_minute=settings.CHAT_RATE_PER_MINUTE, per_day=settings.CHAT_RATE_PER_DAY)))
    expect(title_limits().per_minute).to(equal(settings.TITLE_RATE_PER_MINUTE))
    expect(title_limits().per_day).to(equal(settings.TITLE_RATE_PER_DAY))


def test_today_uses_quota_timezone(ledger):
    # 03:00 UTC on the 16th is still the 15th in Los Angeles
    expect(ledger.today(datetime(2024, 3, 16, 3, 0, tzinfo=timezone.utc))).to(equal("2024-03-15"))


def test_seconds_until_midnight(ledger):
    # 11:00 local, 13 hours left
    expect(ledger.seconds_until_midnight(NOW)).to(equal(13 * 3600))


def test_seconds_until_midnight_across_dst_change(ledger):
    # 2024-03-10 is 23 hours long in Los Angeles; 00:30 PST is 08:30 UTC
    start = datetime(2024, 3, 10, 8, 30, tzinfo=timezone.utc)
    expect(ledger.seconds_until_midnight(start)).to(equal(22 * 3600 + 30 * 60))


def test_seconds_until_midnight_is_at_least_one(ledger):
    # 23:59:59.5 local
    almost = datetime(2024, 3, 16, 6, 59, 59, 500000, tzinfo=timezone.utc)
    expect(ledger.seconds_until_midnight(almost)).to(equal(1))


@pytest.mark.asyncio
async def test_admission_allowed_for_new_model(ledger, mock_db_cursor):
    mock_db_cursor.fetchone.return_value = ([], 0, TODAY)

    result = await ledger.check_admission("gpt-test", LIMITS)

    expect(result.allowed).to(be_true)
    expect(result.retry_after).to(be_none)


@pytest.mark.asyncio
async def test_admission_does_not_count_the_call(ledger, mock_db_cursor):
    mock_db_cursor.fetchone.return_value = ([], 0, TODAY)

    await ledger.check_admission("gpt-test", LIMITS)

    for sql in _executed_sql(mock_db_cursor):
        expect(sql).not_to(contain("array_append"))


@pytest.mark.asyncio
async def test_admission_denied_per_minute(ledger, mock_db_cursor):
    oldest = NOW - timedelta(seconds=50)
    requests = [oldest] + [NOW - timedelta(seconds=i) for i in range(1, 9)]
    mock_db_cursor.fetchone.return_value = (requests, 9, TODAY)

    result = await ledger.check_admission("gpt-test", LIMITS)

    expect(result.allowed).to(equal(False))
    expect(result.reason).to(equal("perMinute"))
    expect(result.retry_after).to(equal(10))


@pytest.mark.asyncio
async def test_per_minute_retry_is_at_least_one_second(ledger, mock_db_cursor):
    requests = [NOW - timedelta(seconds=60)] * 9
    mock_db_cursor.fetchone.return_value = (requests, 9, TODAY)

    result = await ledger.check_admission("gpt-test", LIMITS)

    expect(result.reason).to(equal("perMinute"))
    expect(result.retry_after).to(equal(1))


@pytest.mark.asyncio
async def test_old_requests_leave_the_window(ledger, mock_db_cursor):
    requests = [NOW - timedelta(seconds=61 + i) for i in range(20)]
    mock_db_cursor.fetchone.return_value = (requests, 5, TODAY)

    result = await ledger.check_admission("gpt-test", LIMITS)

    expect(result.allowed).to(be_true)


@pytest.mark.asyncio
async def test_admission_denied_per_day(ledger, mock_db_cursor):
    mock_db_cursor.fetchone.return_value = ([NOW - timedelta(hours=1)], 19, TODAY)

    result = await ledger.check_admission("gpt-test", LIMITS)

    expect(result.allowed).to(equal(False))
    expect(result.reason).to(equal("perDay"))
    expect(result.retry_after).to(equal(13 * 3600))


@pytest.mark.asyncio
async def test_day_rollover_resets_daily_count(ledger, mock_db_cursor):
    mock_db_cursor.fetchone.return_value = ([], 19, "2024-03-14")

    result = await ledger.check_admission("gpt-test", LIMITS)

    expect(result.allowed).to(be_true)
    expect(_executed_sql(mock_db_cursor)).to(contain(RESET_DAY_SQL))
    reset_call = mock_db_cursor.execute.call_args_list[-1]
    expect(reset_call.args[1]).to(equal((TODAY, "gpt-test", TODAY)))


@pytest.mark.asyncio
async def test_naive_timestamps_are_treated_as_utc(ledger, mock_db_cursor):
    naive = (NOW - timedelta(seconds=30)).replace(tzinfo=None)
    mock_db_cursor.fetchone.return_value = ([naive] * 9, 9, TODAY)

    result = await ledger.check_admission("gpt-test", LIMITS)

    expect(result.reason).to(equal("perMinute"))
    expect(result.retry_after).to(equal(30))


@pytest.mark.asyncio
async def test_record_request_appends_timestamp(ledger, mock_db_cursor, mock_db_connection):
    await ledger.record_request("gpt-test")

    first = mock_db_cursor.execute.call_args_list[0]
    expect(first.args[0]).to(equal(RECORD_SQL))
    expect(first.args[1]).to(equal(("gpt-test", NOW, TODAY, NOW)))
    expect(mock_db_connection.commit.await_count).to(equal(2))


@pytest.mark.asyncio
async def test_record_request_survives_prune_failure(ledger, mock_db_cursor):
    mock_db_cursor.execute.side_effect = [None, RuntimeError("lock timeout")]

    await ledger.record_request("gpt-test")

    expect(mock_db_cursor.execute.await_count).to(equal(2))
