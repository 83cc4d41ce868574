import asyncio
import unittest

from willvault.errors import AuthenticationError, LedgerUnavailable, NotFound, StorageUnavailable
from willvault.retry import BackoffStrategy, RetryPolicy


class Flaky:
    """Fails with `error` for the first `failures` calls, then returns `value`."""

    def __init__(self, failures, error, value="ok"):
        self.failures = failures
        self.error = error
        self.value = value
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return self.value


class TestBackoff(unittest.TestCase):

    def test_strategies(self):
        fixed = RetryPolicy(base_delay_seconds=1, backoff_strategy=BackoffStrategy.FIXED)
        linear = RetryPolicy(base_delay_seconds=1, backoff_strategy=BackoffStrategy.LINEAR)
        exp = RetryPolicy(base_delay_seconds=1, max_delay_seconds=5, backoff_strategy=BackoffStrategy.EXPONENTIAL)
        self.assertEqual([fixed.calculate_delay(n) for n in (1, 2, 3)], [1, 1, 1])
        self.assertEqual([linear.calculate_delay(n) for n in (1, 2, 3)], [1, 2, 3])
        self.assertEqual([exp.calculate_delay(n) for n in (1, 2, 3, 4)], [1, 2, 4, 5])

    def test_jitter_bounds(self):
        policy = RetryPolicy(base_delay_seconds=1, max_delay_seconds=100, jitter_factor=0.5)
        for _ in range(20):
            delay = policy.calculate_delay(3)
            self.assertGreaterEqual(delay, 4)
            self.assertLessEqual(delay, 6)

    def test_max_attempts_validated(self):
        with self.assertRaises(ValueError):
            RetryPolicy(max_attempts=0)


class TestRetryPolicy(unittest.IsolatedAsyncioTestCase):

    def policy(self, **kwargs):
        kwargs.setdefault("base_delay_seconds", 0)
        return RetryPolicy(**kwargs)

    async def test_transient_failure_recovers(self):
        func = Flaky(2, StorageUnavailable("down"))
        policy = self.policy(max_attempts=4)
        self.assertEqual(await policy.execute(func), "ok")
        self.assertEqual(func.calls, 3)
        self.assertEqual(policy.metrics.successful_attempts, 1)
        self.assertEqual(policy.metrics.failed_attempts, 2)

    async def test_exhaustion_reraises_last_transport_error(self):
        last = LedgerUnavailable("still down")
        calls = []

        async def func():
            calls.append(1)
            raise last if len(calls) == 3 else LedgerUnavailable("down")

        with self.assertRaises(LedgerUnavailable) as ctx:
            await self.policy(max_attempts=3).execute(func)
        self.assertIs(ctx.exception, last)
        self.assertEqual(len(calls), 3)

    async def test_non_transport_errors_not_retried(self):
        for error in (AuthenticationError("tag"), NotFound("sha256:00"), ValueError("bad")):
            with self.subTest(error=type(error).__name__):
                func = Flaky(5, error)
                with self.assertRaises(type(error)):
                    await self.policy(max_attempts=4).execute(func)
                self.assertEqual(func.calls, 1)

    async def test_on_retry_callback(self):
        seen = []
        policy = self.policy(max_attempts=3, on_retry=lambda n, e, d: seen.append((n, type(e).__name__)))
        await policy.execute(Flaky(2, StorageUnavailable("down")))
        self.assertEqual(seen, [(1, "StorageUnavailable"), (2, "StorageUnavailable")])

    async def test_no_retry(self):
        func = Flaky(1, StorageUnavailable("down"))
        with self.assertRaises(StorageUnavailable):
            await RetryPolicy.no_retry().execute(func)
        self.assertEqual(func.calls, 1)

    async def test_backoff_sleep_is_cancellable(self):
        policy = RetryPolicy(max_attempts=5, base_delay_seconds=30, backoff_strategy=BackoffStrategy.FIXED)
        task = asyncio.create_task(policy.execute(Flaky(5, StorageUnavailable("down"))))
        await asyncio.sleep(0.01)
        task.cancel()
        with self.assertRaises(asyncio.CancelledError):
            await task


if __name__ == "__main__":
    unittest.main()
