"""
Tests for repochat/utils/async_utils.py
Deadline races and background tasks.
"""

import asyncio

import pytest

from repochat.utils.async_utils import fire_and_forget, with_timeout


async def _value_after(seconds, value):
    await asyncio.sleep(seconds)
    return value


async def _fail():
    raise RuntimeError('boom')


class TestWithTimeout:
    """Test the race-against-deadline combinator."""

    @pytest.mark.asyncio
    async def test_result_before_deadline(self):
        assert await with_timeout(_value_after(0, 'real'), 1.0, 'fallback') == 'real'

    @pytest.mark.asyncio
    async def test_fallback_after_deadline(self):
        assert await with_timeout(_value_after(1.0, 'real'), 0.05, 'fallback') == 'fallback'

    @pytest.mark.asyncio
    async def test_fallback_on_error(self):
        assert await with_timeout(_fail(), 1.0, 'fallback') == 'fallback'

    @pytest.mark.asyncio
    async def test_late_call_keeps_running(self):
        finished = asyncio.Event()

        async def slow():
            await asyncio.sleep(0.1)
            finished.set()
            return 'late'

        assert await with_timeout(slow(), 0.01, 'fallback') == 'fallback'
        await asyncio.wait_for(finished.wait(), timeout=1.0)
        assert finished.is_set()

    @pytest.mark.asyncio
    async def test_works_with_threads(self):
        assert await with_timeout(asyncio.to_thread(lambda: 42), 1.0, 0) == 42


class TestFireAndForget:
    """Test background task scheduling."""

    @pytest.mark.asyncio
    async def test_tracked_set_is_emptied_on_completion(self):
        tracked = set()
        task = fire_and_forget(_value_after(0, 'done'), 'job', tracked)
        assert task in tracked
        assert await task == 'done'
        await asyncio.sleep(0)
        assert tracked == set()

    @pytest.mark.asyncio
    async def test_failure_is_not_raised_to_the_scheduler(self):
        tracked = set()
        task = fire_and_forget(_fail(), 'job', tracked)
        await asyncio.gather(task, return_exceptions=True)
        await asyncio.sleep(0)
        assert tracked == set()
        assert isinstance(task.exception(), RuntimeError)
