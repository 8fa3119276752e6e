# SPDX-PackageName: pgtest
# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: Copyright pgtest contributors.

from __future__ import annotations
from typing import TYPE_CHECKING, Any
from typing_extensions import TypeAliasType

import asyncpg

from pgtest._internal import _tracing

if TYPE_CHECKING:
    import pathlib

    from collections.abc import Awaitable, Callable, Mapping


_InitHook = TypeAliasType(
    "_InitHook", "Callable[[asyncpg.Connection], Awaitable[None]]"
)


def _chain_init(*hooks: _InitHook) -> _InitHook:
    async def init(conn: asyncpg.Connection) -> None:
        for hook in hooks:
            await hook(conn)

    return init


def pool_config(
    sock_dir: pathlib.Path,
    database: str,
    *,
    user: str,
    trace: bool = False,
    options: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    """Keyword arguments for ``asyncpg.create_pool()``.

    The pool talks to *database* over the Unix socket in *sock_dir*.
    *options* are merged on top; with *trace* set every new connection
    logs its statements at the ``TRACE`` level before any
    caller-supplied ``init`` hook runs.
    """
    cfg: dict[str, Any] = {
        "host": str(sock_dir),
        "user": user,
        "database": database,
    }
    if options:
        cfg |= options

    if trace:
        user_init = cfg.get("init")
        if user_init is None:
            cfg["init"] = _tracing.attach_tracer
        else:
            cfg["init"] = _chain_init(_tracing.attach_tracer, user_init)

    return cfg


def new_pool(cfg: Mapping[str, Any]) -> asyncpg.Pool:
    """Construct, but do not connect, a pool from *cfg*.

    Raises ``ValueError`` or ``TypeError`` for a bad configuration;
    awaiting the returned pool opens it.
    """
    return asyncpg.create_pool(**cfg)
