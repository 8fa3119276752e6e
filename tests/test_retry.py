# SPDX-PackageName: pgtest
# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: Copyright pgtest contributors.

from __future__ import annotations

from pgtest import errors
from pgtest._internal import _retry
from pgtest._internal import _server
from pgtest._internal import _testbase as tb


class Flaky:
    def __init__(self, failures: int) -> None:
        self.failures = failures
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise ConnectionRefusedError(f"attempt {self.calls} refused")
        return "conn"


class TestRetry(tb.TestCase):
    async def test_retry_first_attempt(self) -> None:
        fn = Flaky(0)
        self.assertEqual(await _retry.retry(fn, 5, 0), "conn")
        self.assertEqual(fn.calls, 1)

    async def test_retry_eventually_succeeds(self) -> None:
        fn = Flaky(3)
        self.assertEqual(await _retry.retry(fn, 5, 0.001), "conn")
        self.assertEqual(fn.calls, 4)

    async def test_retry_raises_last_error(self) -> None:
        fn = Flaky(10)
        with self.assertRaisesRegex(ConnectionRefusedError, "attempt 3 "):
            await _retry.retry(fn, 3, 0.001)
        self.assertEqual(fn.calls, 3)

    async def test_retry_single_attempt(self) -> None:
        fn = Flaky(1)
        with self.assertRaises(ConnectionRefusedError):
            await _retry.retry(fn, 1, 0.001)
        self.assertEqual(fn.calls, 1)

    def test_retry_budget(self) -> None:
        self.assertEqual(_retry.READY_ATTEMPTS, 1000)
        self.assertAlmostEqual(_retry.READY_INTERVAL, 0.01)


class FakePool:
    def __init__(self, failures: int) -> None:
        self.acquire = Flaky(failures)


class TestWaitUntilReady(tb.TestCase):
    async def test_ready(self) -> None:
        pool = FakePool(2)
        conn = await _server.wait_until_ready(
            pool,  # type: ignore [arg-type]
            attempts=5,
            interval=0.001,
        )
        self.assertEqual(conn, "conn")

    async def test_never_ready_reports_last_error(self) -> None:
        pool = FakePool(100)
        with self.assertRaisesRegex(
            errors.ReadinessTimeoutError,
            "after 4 attempts, last error: attempt 4 refused",
        ) as cm:
            await _server.wait_until_ready(
                pool,  # type: ignore [arg-type]
                attempts=4,
                interval=0.001,
            )

        self.assertIsInstance(cm.exception.__cause__, ConnectionRefusedError)
