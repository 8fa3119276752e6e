# SPDX-PackageName: pgtest
# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: Copyright pgtest contributors.

"""Statement tracing for connections handed out by the test pool."""

from __future__ import annotations
from typing import TYPE_CHECKING

import logging

if TYPE_CHECKING:
    import asyncpg
    from asyncpg.connection import LoggedQuery


TRACE = 5
logging.addLevelName(TRACE, "TRACE")

logger = logging.getLogger("pgtest.query")


def log_query(record: LoggedQuery) -> None:
    if not logger.isEnabledFor(TRACE):
        return

    if record.exception is not None:
        logger.log(
            TRACE,
            "query failed after %.3fms: %s args=%r: %s",
            record.elapsed * 1000,
            record.query,
            record.args,
            record.exception,
        )
    else:
        logger.log(
            TRACE,
            "query took %.3fms: %s args=%r",
            record.elapsed * 1000,
            record.query,
            record.args,
        )


async def attach_tracer(conn: asyncpg.Connection) -> None:
    conn.add_query_logger(log_query)
