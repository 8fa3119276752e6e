# SPDX-PackageName: pgtest
# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: Copyright pgtest contributors.

from __future__ import annotations
from typing import TYPE_CHECKING, TypeVar

import asyncio

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable


_T = TypeVar("_T")

# The server gives no readiness notification, so it is polled.  These
# allow roughly ten seconds for it to start accepting connections.
READY_ATTEMPTS = 1000
READY_INTERVAL = 0.01


async def retry(
    fn: Callable[[], Awaitable[_T]],
    attempts: int = READY_ATTEMPTS,
    interval: float = READY_INTERVAL,
) -> _T:
    """Await *fn* until it succeeds, at most *attempts* times.

    Sleeps a fixed *interval* between attempts.  Once the attempts are
    used up the last exception raised by *fn* propagates unchanged.
    """
    while True:
        try:
            return await fn()
        except Exception:
            attempts -= 1
            if attempts <= 0:
                raise

        await asyncio.sleep(interval)
