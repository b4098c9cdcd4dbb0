"""
Tests for RetryPolicy / RetryingFetcher: attempt bounds, classification and
the backoff schedule.
"""

from __future__ import annotations

import asyncio
import unittest
from unittest.mock import AsyncMock

from tourdesk.errors import StaleWriteError, ValidationError
from tourdesk.requests import ApiResponseError
from tourdesk.retry import RetryingFetcher, RetryPolicy


class TestRetryPolicy(unittest.TestCase):

    def test_defaults(self):
        policy = RetryPolicy()
        self.assertEqual(policy.attempts, 3)
        self.assertEqual(policy.delay, 1.0)

    def test_exponential_schedule_is_capped(self):
        policy = RetryPolicy(attempts=6, delay=1.0, backoff=2.0, max_delay=5.0, jitter=0)
        self.assertEqual([policy.base_delay(n) for n in range(1, 5)], [1.0, 2.0, 4.0, 5.0])

    def test_fixed_policy(self):
        policy = RetryPolicy.fixed(attempts=3, delay=1.0)
        self.assertEqual([policy.base_delay(n) for n in (1, 2)], [1.0, 1.0])
        self.assertEqual(policy.jitter, 0.0)

    def test_invalid_values_rejected(self):
        with self.assertRaises(ValueError):
            RetryPolicy(attempts=0)
        with self.assertRaises(ValueError):
            RetryPolicy(backoff=0.5)
        with self.assertRaises(ValueError):
            RetryPolicy(jitter=2)


class TestRetryingFetcher(unittest.IsolatedAsyncioTestCase):

    def make_fetcher(self, **policy_kwargs) -> tuple[RetryingFetcher, AsyncMock]:
        sleep = AsyncMock()
        policy = RetryPolicy(**{"attempts": 3, "delay": 1.0, "backoff": 1.0, "jitter": 0.0, **policy_kwargs})
        return RetryingFetcher(policy, sleep=sleep, rand=lambda: 1.0), sleep

    async def test_always_failing_operation_runs_exactly_n_times(self):
        fetcher, sleep = self.make_fetcher()
        operation = AsyncMock(side_effect=ConnectionError("down"))
        with self.assertRaises(ConnectionError):
            await fetcher.run(operation)
        self.assertEqual(operation.await_count, 3)
        self.assertEqual(sleep.await_count, 2)

    async def test_fails_twice_then_succeeds(self):
        fetcher, _ = self.make_fetcher()
        operation = AsyncMock(side_effect=[ConnectionError("1"), asyncio.TimeoutError(), "ok"])
        result = await fetcher.run(operation)
        self.assertEqual(result, "ok")
        self.assertEqual(operation.await_count, 3)

    async def test_last_error_propagates_unchanged(self):
        fetcher, _ = self.make_fetcher()
        last = ConnectionError("third")
        operation = AsyncMock(side_effect=[ConnectionError("first"), ConnectionError("second"), last])
        with self.assertRaises(ConnectionError) as ctx:
            await fetcher.run(operation)
        self.assertIs(ctx.exception, last)

    async def test_terminal_errors_are_not_retried(self):
        fetcher, sleep = self.make_fetcher()
        for exc in (
            ValidationError("missing", ["tour_id"]),
            StaleWriteError("orders", "1", "t"),
            ApiResponseError(403, {"message": "permission denied"}),
        ):
            operation = AsyncMock(side_effect=exc)
            with self.assertRaises(type(exc)):
                await fetcher.run(operation)
            self.assertEqual(operation.await_count, 1)
        sleep.assert_not_awaited()

    async def test_retryable_status_is_retried(self):
        fetcher, _ = self.make_fetcher()
        operation = AsyncMock(side_effect=[ApiResponseError(503), ApiResponseError(429), [1]])
        self.assertEqual(await fetcher.run(operation), [1])

    async def test_sleeps_follow_backoff_with_jitter(self):
        fetcher, sleep = self.make_fetcher(attempts=4, delay=1.0, backoff=2.0, jitter=0.5)
        operation = AsyncMock(side_effect=ConnectionError("down"))
        with self.assertRaises(ConnectionError):
            await fetcher.run(operation)
        delays = [call.args[0] for call in sleep.await_args_list]
        # rand() == 1.0 → each delay grows by the full jitter fraction
        self.assertEqual(delays, [1.5, 3.0, 6.0])

    async def test_single_attempt_policy_never_sleeps(self):
        fetcher, sleep = self.make_fetcher(attempts=1)
        operation = AsyncMock(side_effect=ConnectionError("down"))
        with self.assertRaises(ConnectionError):
            await fetcher.run(operation)
        self.assertEqual(operation.await_count, 1)
        sleep.assert_not_awaited()

    async def test_retry_attempts_are_logged(self):
        fetcher, _ = self.make_fetcher(attempts=2)
        operation = AsyncMock(side_effect=[ConnectionError("blip"), "ok"])
        with self.assertLogs("tourdesk.retry", level="WARNING") as logs:
            await fetcher.run(operation, "fetch orders")
        self.assertIn("fetch orders", logs.output[0])
