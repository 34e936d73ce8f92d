"""
SongCard - Retry Tests

Tests for songcard/services/retry.py. Validates:
- Attempt counting on success and on exhaustion
- Exponential backoff delays and the max-delay cap
- RetryExhausted wrapping (and chaining) the last failure
- Abort events stopping further attempts
- gather_with_deadline: results, deadline expiry, failure propagation
"""

import asyncio

import pytest

from songcard.errors import RetryExhausted, UpstreamError, UpstreamTimeout
from songcard.models import RetryPolicy
from songcard.services.retry import gather_with_deadline, retry


class Flaky:
    """Fails the first *failures* calls, then returns *value*."""

    def __init__(self, failures: int, value: str = "ok") -> None:
        self.failures = failures
        self.value = value
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise UpstreamError(f"failure {self.calls}")
        return self.value


# ===========================================================================
# retry
# ===========================================================================


class TestRetry:
    def test_success_first_try(self, no_sleep):
        op = Flaky(0)
        assert asyncio.run(retry(op, RetryPolicy(max_attempts=3), sleep=no_sleep)) == "ok"
        assert op.calls == 1
        assert no_sleep.delays == []

    def test_success_on_attempt_k(self, no_sleep):
        op = Flaky(2)
        result = asyncio.run(retry(op, RetryPolicy(max_attempts=3), sleep=no_sleep))
        assert result == "ok"
        assert op.calls == 3

    def test_always_failing_calls_n_times(self, no_sleep):
        op = Flaky(100)
        with pytest.raises(RetryExhausted) as info:
            asyncio.run(retry(op, RetryPolicy(max_attempts=4), sleep=no_sleep))
        assert op.calls == 4
        assert info.value.attempts == 4

    def test_exhaustion_wraps_last_error(self, no_sleep):
        op = Flaky(100)
        with pytest.raises(RetryExhausted) as info:
            asyncio.run(retry(op, RetryPolicy(max_attempts=2), sleep=no_sleep))
        assert isinstance(info.value.last_error, UpstreamError)
        assert str(info.value.last_error) == "failure 2"
        assert info.value.__cause__ is info.value.last_error

    def test_backoff_delays(self, no_sleep):
        policy = RetryPolicy(
            max_attempts=4, initial_delay_ms=1000, max_delay_ms=10000, backoff_factor=2
        )
        with pytest.raises(RetryExhausted):
            asyncio.run(retry(Flaky(100), policy, sleep=no_sleep))
        # No sleep after the final attempt
        assert no_sleep.delays == [2.0, 4.0, 8.0]

    def test_backoff_is_capped(self, no_sleep):
        policy = RetryPolicy(max_attempts=3, initial_delay_ms=1000, max_delay_ms=1500)
        with pytest.raises(RetryExhausted):
            asyncio.run(retry(Flaky(100), policy, sleep=no_sleep))
        assert no_sleep.delays == [1.5, 1.5]

    def test_metadata_policy_delays(self, no_sleep):
        policy = RetryPolicy(max_attempts=2, initial_delay_ms=500, max_delay_ms=2000)
        with pytest.raises(RetryExhausted):
            asyncio.run(retry(Flaky(100), policy, sleep=no_sleep))
        assert no_sleep.delays == [1.0]

    def test_single_attempt_never_sleeps(self, no_sleep):
        with pytest.raises(RetryExhausted):
            asyncio.run(retry(Flaky(100), RetryPolicy(max_attempts=1), sleep=no_sleep))
        assert no_sleep.delays == []

    def test_timeouts_exhausted_report_504(self, no_sleep):
        async def always_timeout():
            raise UpstreamTimeout("slow")

        with pytest.raises(RetryExhausted) as info:
            asyncio.run(retry(always_timeout, RetryPolicy(max_attempts=2), sleep=no_sleep))
        assert info.value.status_code == 504

    def test_abort_set_before_start(self, no_sleep):
        op = Flaky(0)

        async def run():
            abort = asyncio.Event()
            abort.set()
            return await retry(op, abort=abort, sleep=no_sleep)

        with pytest.raises(UpstreamTimeout):
            asyncio.run(run())
        assert op.calls == 0

    def test_abort_during_backoff(self):
        op = Flaky(100)

        async def run():
            abort = asyncio.Event()

            async def slow_sleep(seconds):
                abort.set()
                await asyncio.sleep(10)

            return await retry(op, RetryPolicy(max_attempts=5), abort=abort, sleep=slow_sleep)

        with pytest.raises(UpstreamTimeout):
            asyncio.run(asyncio.wait_for(run(), timeout=2))
        assert op.calls == 1


class TestRetryPolicy:
    def test_defaults(self):
        policy = RetryPolicy()
        assert policy.max_attempts == 3
        assert policy.initial_delay_ms == 1000
        assert policy.max_delay_ms == 10000
        assert policy.backoff_factor == 2.0

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"max_attempts": 0},
            {"backoff_factor": 1.0},
            {"initial_delay_ms": -1},
        ],
    )
    def test_invalid(self, kwargs):
        with pytest.raises(ValueError):
            RetryPolicy(**kwargs)


# ===========================================================================
# gather_with_deadline
# ===========================================================================


class TestGatherWithDeadline:
    def test_returns_results_in_order(self):
        async def first(abort):
            await asyncio.sleep(0.01)
            return 1

        async def second(abort):
            return 2

        result = asyncio.run(gather_with_deadline(first, second, timeout=1))
        assert result == (1, 2)

    def test_deadline_cancels_everything(self):
        cancelled = []

        async def slow(abort):
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.append(True)
                raise

        async def fast(abort):
            return "done"

        with pytest.raises(UpstreamTimeout):
            asyncio.run(gather_with_deadline(slow, fast, timeout=0.05))
        assert cancelled == [True]

    def test_deadline_stops_retries(self):
        op = Flaky(100)

        async def retried(abort):
            return await retry(op, RetryPolicy(max_attempts=10, initial_delay_ms=50), abort=abort)

        with pytest.raises(UpstreamTimeout):
            asyncio.run(gather_with_deadline(retried, timeout=0.2))
        assert op.calls < 10

    def test_branch_failure_propagates(self):
        async def ok(abort):
            await asyncio.sleep(0.5)
            return 1

        async def broken(abort):
            raise UpstreamError("boom")

        with pytest.raises(UpstreamError):
            asyncio.run(gather_with_deadline(ok, broken, timeout=1))
