# SPDX-PackageName: pgtest
# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: Copyright pgtest contributors.

from __future__ import annotations
from typing import (
    Any,
    ClassVar,
    Concatenate,
    ParamSpec,
    TypeVar,
    TYPE_CHECKING,
)

import asyncio
import functools
import inspect
import os
import pathlib
import sys
import unittest

from pgtest import errors
from pgtest._internal import _binaries
from pgtest._internal import _server
from pgtest._internal._config import Config


if TYPE_CHECKING:
    from collections.abc import (
        Awaitable,
        Iterator,
        Callable,
    )


_P = ParamSpec("_P")
_R = TypeVar("_R", covariant=True)

_TestCase_T = TypeVar("_TestCase_T", bound="TestCase")


def find_postgres(bin_dir: pathlib.Path | None = None) -> pathlib.Path:
    """Return the PostgreSQL bin directory or skip the calling test."""
    if sys.platform != "win32" and os.geteuid() == 0:
        raise unittest.SkipTest("PostgreSQL refuses to run as root")

    try:
        return _binaries.find_bin_dir(bin_dir)
    except errors.BinaryNotFoundError as e:
        raise unittest.SkipTest(str(e)) from None


class TestCaseMeta(type):
    @staticmethod
    def _iter_methods(
        bases: tuple[type, ...], ns: dict[str, Any]
    ) -> Iterator[tuple[str, Callable[..., Any]]]:
        for base in bases:
            for methname in dir(base):
                if not methname.startswith("test_"):
                    continue

                meth = getattr(base, methname)
                if not inspect.iscoroutinefunction(meth):
                    continue

                yield methname, meth

        for methname, meth in ns.items():
            if not methname.startswith("test_"):
                continue

            if not inspect.iscoroutinefunction(meth):
                continue

            yield methname, meth

    @classmethod
    def wrap(
        cls,
        meth: Callable[Concatenate[_TestCase_T, _P], Awaitable[_R]],
    ) -> Callable[Concatenate[_TestCase_T, _P], _R]:
        @functools.wraps(meth)
        def wrapper(
            self: _TestCase_T,
            *args: _P.args,
            **kwargs: _P.kwargs,
        ) -> _R:
            return self.loop.run_until_complete(meth(self, *args, **kwargs))

        return wrapper  # type: ignore [return-value]

    def __new__(
        mcls, name: str, bases: tuple[type, ...], ns: dict[str, Any]
    ) -> type:
        for methname, meth in mcls._iter_methods(bases, ns.copy()):
            ns[methname] = mcls.wrap(meth)

        return super().__new__(mcls, name, bases, ns)


class TestCase(unittest.TestCase, metaclass=TestCaseMeta):
    loop: ClassVar[asyncio.AbstractEventLoop]

    @classmethod
    def setUpClass(cls) -> None:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        cls.loop = loop

    @classmethod
    def tearDownClass(cls) -> None:
        cls.loop.close()
        asyncio.set_event_loop(None)

    @classmethod
    def adapt_call(cls, coro: Any) -> Any:
        return cls.loop.run_until_complete(coro)

    def addCleanup(  # type: ignore[override]  # noqa: N802
        self, func: Callable[..., Any], *args: Any, **kwargs: Any
    ) -> None:
        @functools.wraps(func)
        def cleanup() -> None:
            res = func(*args, **kwargs)
            if inspect.isawaitable(res):
                self.loop.run_until_complete(res)

        super().addCleanup(cleanup)


class InstanceTestCase(TestCase):
    """Runs its tests against one PostgreSQL instance per class.

    The instance is started in ``setUpClass`` from ``CONFIG`` and
    stopped in ``tearDownClass``.  The whole class is skipped when no
    usable PostgreSQL installation is available.
    """

    CONFIG: ClassVar[Config | None] = None

    instance: ClassVar[_server.Instance]

    @classmethod
    def get_config(cls) -> Config:
        if cls.CONFIG is not None:
            return cls.CONFIG
        return Config.from_env()

    @classmethod
    def setUpClass(cls) -> None:
        config = cls.get_config()
        find_postgres(config.bin_dir)
        super().setUpClass()
        try:
            cls.instance = cls.adapt_call(_server.start(config))
        except BaseException:
            super().tearDownClass()
            raise

    @classmethod
    def tearDownClass(cls) -> None:
        try:
            cls.adapt_call(cls.instance.stop())
        finally:
            super().tearDownClass()
