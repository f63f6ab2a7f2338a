"""Tests for the backoff policy and the cancellable delay primitive."""

import asyncio

import pytest

from utils.backoff import RunLifecycle, compute_backoff_ms
from utils.errors import WorkerStopped


class TestComputeBackoff:
    @pytest.mark.parametrize("attempt", range(0, 8))
    def test_default_bounds(self, attempt):
        exp = min(10_000, 500 * 2**attempt)
        for _ in range(200):
            delay = compute_backoff_ms(attempt)
            assert exp <= delay <= exp + min(250, exp)

    def test_capped_at_max_plus_jitter(self):
        for _ in range(200):
            delay = compute_backoff_ms(30)
            assert 10_000 <= delay <= 10_250

    def test_negative_attempt_treated_as_zero(self):
        for _ in range(50):
            assert 500 <= compute_backoff_ms(-3) <= 750

    def test_feed_specific_bounds(self):
        for _ in range(200):
            assert 400 <= compute_backoff_ms(1, 200, 5_000) <= 650
            assert 5_000 <= compute_backoff_ms(10, 200, 5_000) <= 5_250

    def test_small_base_limits_jitter(self):
        for _ in range(200):
            assert 10 <= compute_backoff_ms(0, 10, 1_000) <= 20

    def test_returns_int(self):
        assert isinstance(compute_backoff_ms(2), int)


class TestRunLifecycle:
    async def test_sleep_waits(self):
        lifecycle = RunLifecycle()
        loop = asyncio.get_running_loop()
        started = loop.time()
        await lifecycle.sleep(20)
        assert loop.time() - started >= 0.015

    async def test_zero_sleep_returns(self):
        await RunLifecycle().sleep(0)

    async def test_stop_interrupts_sleep(self):
        lifecycle = RunLifecycle()
        asyncio.get_running_loop().call_later(0.01, lifecycle.stop)
        with pytest.raises(WorkerStopped):
            await lifecycle.sleep(10_000)
        assert lifecycle.stopping

    async def test_sleep_after_stop_raises(self):
        lifecycle = RunLifecycle()
        lifecycle.stop()
        with pytest.raises(WorkerStopped):
            await lifecycle.sleep(0)
