# SPDX-PackageName: pgtest
# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: Copyright pgtest contributors.

from __future__ import annotations
from typing import TYPE_CHECKING, Any
from typing_extensions import Self

import dataclasses
import os
import pathlib
import shlex

from pgtest import errors

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence


def _truthy(val: str) -> bool:
    return val in {
        "on",
        "yes",
        "true",
        "1",
        "enabled",
        "enable",
    }


def _falsy(val: str) -> bool:
    return val in {
        "off",
        "no",
        "false",
        "0",
        "disabled",
        "disable",
    }


@dataclasses.dataclass(kw_only=True, frozen=True)
class Config:
    """How to provision a test instance.

    *bin_dir* overrides where ``initdb`` and ``postgres`` are looked
    up.  *data_dir*, when given, holds the cluster and is owned by the
    caller: it is reused across runs and never removed.  Otherwise a
    temporary directory is created and removed on stop.
    *additional_args* are appended verbatim to the ``postgres``
    command line and *pool_options* to the ``asyncpg.create_pool()``
    call for the test database.
    """

    bin_dir: pathlib.Path | None = None
    data_dir: pathlib.Path | None = None
    additional_args: Sequence[str] = ()
    pool_options: Mapping[str, Any] = dataclasses.field(default_factory=dict)
    trace_queries: bool = True

    @classmethod
    def from_env(
        cls,
        env: Mapping[str, str] | None = None,
        /,
        **overrides: Any,
    ) -> Self:
        """Build a config from ``PGTEST_*`` environment variables.

        Keyword *overrides* take precedence over the environment.
        """
        if env is None:
            env = os.environ

        kwargs: dict[str, Any] = {}
        if bin_dir := env.get("PGTEST_BIN_DIR"):
            kwargs["bin_dir"] = pathlib.Path(bin_dir)
        if data_dir := env.get("PGTEST_DATA_DIR"):
            kwargs["data_dir"] = pathlib.Path(data_dir)

        if server_args := env.get("PGTEST_SERVER_ARGS"):
            try:
                kwargs["additional_args"] = tuple(shlex.split(server_args))
            except ValueError as e:
                raise errors.ConfigParseError(
                    f"cannot parse PGTEST_SERVER_ARGS={server_args!r}: {e}"
                ) from None

        if trace := env.get("PGTEST_TRACE_QUERIES"):
            trace = trace.strip().lower()
            if _truthy(trace):
                kwargs["trace_queries"] = True
            elif _falsy(trace):
                kwargs["trace_queries"] = False
            else:
                raise errors.ConfigParseError(
                    f"PGTEST_TRACE_QUERIES must be a boolean, got {trace!r}"
                )

        return cls(**(kwargs | overrides))
