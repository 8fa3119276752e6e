# SPDX-PackageName: pgtest
# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: Copyright pgtest contributors.


"""Disposable PostgreSQL servers for unit tests.

Requires PostgreSQL to be installed, but not running::

    async with pgtest.instance() as pg:
        await pg.pool.execute("CREATE TABLE test (val text)")
"""

from pgtest._internal._config import Config
from pgtest._internal._binaries import find_bin_dir
from pgtest._internal._server import (
    Instance,
    instance,
    start,
    stop,
)
from pgtest._internal._tracing import TRACE

from pgtest.errors import (
    AbortedError,
    BinaryNotFoundError,
    BootstrapError,
    ConfigParseError,
    InitializationError,
    InstanceError,
    PoolOpenError,
    ProcessSpawnError,
    ReadinessTimeoutError,
    SignalError,
)


__version__ = "0.1.0"

__all__ = (
    "TRACE",
    "AbortedError",
    "BinaryNotFoundError",
    "BootstrapError",
    "Config",
    "ConfigParseError",
    "InitializationError",
    "Instance",
    "InstanceError",
    "PoolOpenError",
    "ProcessSpawnError",
    "ReadinessTimeoutError",
    "SignalError",
    "find_bin_dir",
    "instance",
    "start",
    "stop",
)
