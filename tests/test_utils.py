"""Tests for epoch arithmetic and retry helpers."""

import asyncio

import pytest

from autovoter.utils import async_retry, epoch_id, epoch_start, time_until, truncate_address
from config.settings import EPOCH_ORIGIN, WEEK


class TestEpochId:
    def test_origin_is_epoch_zero(self):
        assert epoch_id(EPOCH_ORIGIN) == 0

    def test_same_close_gives_same_id(self):
        close = EPOCH_ORIGIN + 57 * WEEK
        assert epoch_id(close) == epoch_id(close) == 57

    @pytest.mark.parametrize("start", [EPOCH_ORIGIN, EPOCH_ORIGIN + 3 * WEEK + 1234, 1_760_000_000])
    def test_strictly_increasing_per_week(self, start):
        ids = [epoch_id(start + i * WEEK) for i in range(10)]
        assert all(b == a + 1 for a, b in zip(ids, ids[1:]))

    def test_epoch_start_is_week_aligned(self):
        ts = 1_760_123_456
        start = epoch_start(ts)
        assert start % WEEK == 0
        assert start <= ts < start + WEEK


class TestAsyncRetry:
    def test_retries_then_succeeds(self):
        calls = []

        @async_retry(max_attempts=3, delay=0)
        async def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise RuntimeError("boom")
            return "ok"

        assert asyncio.run(flaky()) == "ok"
        assert len(calls) == 3

    def test_raises_after_last_attempt(self):
        @async_retry(max_attempts=2, delay=0)
        async def broken():
            raise ValueError("nope")

        with pytest.raises(ValueError):
            asyncio.run(broken())


def test_time_until_formats_days_and_hours():
    assert time_until(3 * 86400 + 2 * 3600, now=0) == "3 days, 2 hours"
    assert time_until(0, now=10) == "0 seconds"


def test_truncate_address():
    assert truncate_address("0x1234567890abcdef1234567890abcdef12345678") == "0x1234...345678"
