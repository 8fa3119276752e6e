# SPDX-PackageName: pgtest
# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: Copyright pgtest contributors.

from __future__ import annotations
from typing import TYPE_CHECKING, Any, Optional
from typing_extensions import Self

import asyncio
import contextlib
import logging
import os
import pathlib
import shutil
import signal
import subprocess
import sys
import tempfile
import urllib.parse

import asyncpg

from pgtest import errors
from pgtest._internal import _binaries
from pgtest._internal import _pool
from pgtest._internal import _process
from pgtest._internal import _retry
from pgtest._internal._config import Config

if TYPE_CHECKING:
    import types

    from collections.abc import AsyncIterator, Iterator, Mapping, Sequence


logger = logging.getLogger(__name__)

ADMIN_USER = "test"
ADMIN_DATABASE = "postgres"
TEST_DATABASE = "test"

# How long stop() lets the pool wait for checked-out connections.
POOL_CLOSE_TIMEOUT = 10.0

# initdb refuses to run under some default locales (notably on macOS).
if sys.platform == "darwin":
    SERVER_LOCALE = "en_US.UTF-8"
else:
    SERVER_LOCALE = "C.UTF-8"


def command_env(env: Mapping[str, str] | None = None, /) -> dict[str, str]:
    res = dict(os.environ)
    res["LC_ALL"] = SERVER_LOCALE
    if env is not None:
        res |= env
    return res


def _quote_ident(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def initialize_cluster(
    bin_dir: pathlib.Path,
    data_dir: pathlib.Path,
    *,
    user: str = ADMIN_USER,
) -> None:
    """Run ``initdb`` to create a fresh cluster in *data_dir*.

    The superuser is *user* and authenticates without a password.  A
    directory that already holds a cluster is left alone.
    """
    if (data_dir / "PG_VERSION").exists():
        logger.debug("reusing database cluster in %s", data_dir)
        return

    cmd = [
        str(bin_dir / _binaries.INITDB),
        "-D",
        str(data_dir),
        "--no-sync",
        f"--username={user}",
    ]
    logger.debug("running %s", " ".join(cmd))
    try:
        proc = subprocess.run(
            cmd,
            check=False,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            env=command_env(),
        )
    except OSError as e:
        raise errors.InitializationError(
            f"failed to initialize database cluster: {e}"
        ) from e

    if proc.returncode != 0:
        raise errors.InitializationError(
            f"failed to initialize database cluster: initdb exited "
            f"with code {proc.returncode} -> {proc.stdout}",
            output=proc.stdout,
        )


def launch_server(
    bin_dir: pathlib.Path,
    data_dir: pathlib.Path,
    sock_dir: pathlib.Path,
    additional_args: Sequence[str] = (),
) -> _process.ServerProcess:
    """Start ``postgres`` listening only on a Unix socket in *sock_dir*.

    fsync is off.  *additional_args* follow the fixed arguments
    verbatim.  stdout and stderr are piped separately and drained in
    the background, so the tail of each can be reported if the server
    fails later on.
    """
    args = [
        str(bin_dir / _binaries.POSTGRES),
        "-D",
        str(data_dir),
        "-k",
        str(sock_dir),
        "-h",
        "",
        "-F",
        *additional_args,
    ]
    logger.debug("running %s", " ".join(args))
    try:
        popen = subprocess.Popen(
            args,
            env=command_env(),
            text=True,
            errors="replace",
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )
    except OSError as e:
        raise errors.ProcessSpawnError(
            f"failed to start PostgreSQL: {e}"
        ) from e

    logger.debug("started PostgreSQL server, pid %d", popen.pid)
    return _process.ServerProcess(popen)


def abort(
    msg: str,
    process: _process.ServerProcess,
    error: BaseException | str,
    *,
    error_class: type[errors.AbortedError] = errors.AbortedError,
) -> errors.AbortedError:
    """Stop a server that failed to come up and describe the failure.

    Returns (does not raise) an *error_class* carrying *msg*, *error*
    and the tail of what the server wrote to stdout and stderr.
    """
    with contextlib.suppress(OSError):
        process.send_signal(signal.SIGINT)

    # The exit status of a server being aborted is meaningless.
    process.wait()
    process.join_output()
    stdout = process.stdout
    stderr = process.stderr

    return error_class(
        f"{msg}: {error}\nOUT: {stdout}\nERR: {stderr}",
        stdout=stdout,
        stderr=stderr,
    )


@contextlib.contextmanager
def _aborting(
    msg: str,
    process: _process.ServerProcess,
    error_class: type[errors.AbortedError],
) -> Iterator[None]:
    try:
        yield
    except asyncio.CancelledError:
        abort(msg, process, "cancelled", error_class=error_class)
        raise
    except Exception as e:
        raise abort(msg, process, e, error_class=error_class) from e


async def wait_until_ready(
    pool: asyncpg.Pool,
    *,
    attempts: int = _retry.READY_ATTEMPTS,
    interval: float = _retry.READY_INTERVAL,
) -> asyncpg.pool.PoolConnectionProxy:
    try:
        return await _retry.retry(pool.acquire, attempts, interval)
    except Exception as e:
        raise errors.ReadinessTimeoutError(
            f"server did not accept connections after {attempts} "
            f"attempts, last error: {e}"
        ) from e


async def create_test_database(
    conn: asyncpg.Connection | asyncpg.pool.PoolConnectionProxy,
    name: str = TEST_DATABASE,
) -> None:
    try:
        await conn.execute(f"CREATE DATABASE {_quote_ident(name)}")
    except asyncpg.DuplicateDatabaseError:
        # A persistent data directory from an earlier run.
        logger.debug("database %s already exists", name)


class Instance:
    """A running PostgreSQL server with a ready test database.

    Created by :func:`start`.  Use :attr:`pool` to talk to the test
    database and :meth:`stop` to shut the server down and remove its
    files.
    """

    def __init__(
        self,
        *,
        base_dir: pathlib.Path,
        process: _process.ServerProcess,
        pool: asyncpg.Pool,
        temporary: bool,
        user: str = ADMIN_USER,
        database: str = TEST_DATABASE,
    ) -> None:
        self._base_dir = base_dir
        self._process: Optional[_process.ServerProcess] = process
        self._pool: Optional[asyncpg.Pool] = pool
        self._temporary = temporary
        self._user = user
        self._database = database

    def __repr__(self) -> str:
        state = "running" if self.running() else "stopped"
        return f"<pgtest.Instance {state} host={self.host!r}>"

    @property
    def data_dir(self) -> pathlib.Path:
        return self._base_dir / "data"

    @property
    def sock_dir(self) -> pathlib.Path:
        return self._base_dir / "sock"

    @property
    def host(self) -> str:
        return str(self.sock_dir)

    @property
    def user(self) -> str:
        return self._user

    @property
    def database(self) -> str:
        return self._database

    @property
    def pool(self) -> asyncpg.Pool:
        if self._pool is None:
            raise errors.InstanceError("instance has been stopped")
        return self._pool

    @property
    def dsn(self) -> str:
        host = urllib.parse.quote(self.host, safe="")
        return f"postgresql://{self._user}@/{self._database}?host={host}"

    def get_connect_args(self) -> dict[str, Any]:
        return {
            "host": self.host,
            "user": self._user,
            "database": self._database,
        }

    def running(self) -> bool:
        return self._process is not None and self._process.poll() is None

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: types.TracebackType | None,
    ) -> None:
        await self.stop()

    async def stop(self) -> None:
        """Shut the server down and remove its files.

        Only a failure to signal the server is raised (as
        :class:`~pgtest.errors.SignalError`); the cleanup that follows
        is best-effort and always attempted.  Stopping a stopped
        instance does nothing.
        """
        process = self._process
        if process is None:
            return

        pool, self._pool = self._pool, None
        self._process = None

        try:
            if pool is not None:
                await self._close_pool(pool)

            try:
                process.send_signal(signal.SIGINT)
            except OSError as e:
                raise errors.SignalError(
                    f"could not signal PostgreSQL server "
                    f"(pid {process.pid}): {e}"
                ) from e

            process.wait()
            if process.returncode != 0:
                process.join_output()
                logger.debug(
                    "PostgreSQL server exited with code %s: %s",
                    process.returncode,
                    process.stderr,
                )
                with contextlib.suppress(OSError):
                    process.kill()
                self._remove_sockets()
        finally:
            # A server that could not be signalled keeps its pipes open.
            if process.poll() is not None:
                process.join_output()

            if self._temporary:
                shutil.rmtree(self._base_dir, ignore_errors=True)

    async def _close_pool(self, pool: asyncpg.Pool) -> None:
        try:
            await asyncio.wait_for(pool.close(), POOL_CLOSE_TIMEOUT)
        except Exception:
            logger.warning(
                "could not close connection pool cleanly, terminating it",
                exc_info=True,
            )
            pool.terminate()

    def _remove_sockets(self) -> None:
        try:
            entries = list(self.sock_dir.iterdir())
        except OSError:
            return

        for entry in entries:
            try:
                entry.unlink()
            except OSError as e:
                logger.debug("could not remove %s: %s", entry, e)


async def _provision(
    bin_dir: pathlib.Path,
    base_dir: pathlib.Path,
    config: Config,
    *,
    temporary: bool,
) -> Instance:
    data_dir = base_dir / "data"
    sock_dir = base_dir / "sock"
    data_dir.mkdir(mode=0o711, parents=True, exist_ok=True)
    sock_dir.mkdir(mode=0o711, parents=True, exist_ok=True)

    initialize_cluster(bin_dir, data_dir, user=ADMIN_USER)
    process = launch_server(
        bin_dir, data_dir, sock_dir, config.additional_args
    )

    admin_cfg = _pool.pool_config(
        sock_dir,
        ADMIN_DATABASE,
        user=ADMIN_USER,
        options={"min_size": 0, "max_size": 1},
    )
    with _aborting(
        "invalid connection pool configuration",
        process,
        errors.ConfigParseError,
    ):
        admin_pool = _pool.new_pool(admin_cfg)

    try:
        # min_size=0: opening the pool does not connect yet.
        with _aborting(
            "failed to open the administrative connection pool",
            process,
            errors.PoolOpenError,
        ):
            await admin_pool

        with _aborting(
            "PostgreSQL did not become ready",
            process,
            errors.ReadinessTimeoutError,
        ):
            conn = await wait_until_ready(admin_pool)

        with _aborting(
            "failed to create the test database",
            process,
            errors.BootstrapError,
        ):
            try:
                await create_test_database(conn, TEST_DATABASE)
            finally:
                await admin_pool.release(conn)
            await admin_pool.close()
    finally:
        admin_pool.terminate()

    test_cfg = _pool.pool_config(
        sock_dir,
        TEST_DATABASE,
        user=ADMIN_USER,
        trace=config.trace_queries,
        options=config.pool_options,
    )
    with _aborting(
        "invalid connection pool configuration",
        process,
        errors.ConfigParseError,
    ):
        pool = _pool.new_pool(test_cfg)

    try:
        with _aborting(
            "failed to connect to the test database",
            process,
            errors.PoolOpenError,
        ):
            await pool
    except BaseException:
        pool.terminate()
        raise

    return Instance(
        base_dir=base_dir,
        process=process,
        pool=pool,
        temporary=temporary,
    )


async def start(config: Config | None = None) -> Instance:
    """Start a PostgreSQL server with an empty ``test`` database.

    The server runs on temporary storage unless *config* names a
    ``data_dir``, listens only on a Unix socket and has fsync disabled,
    so it is fast but not crash-safe.  If any step fails, everything
    started so far is stopped and removed before the error is raised.
    """
    if config is None:
        config = Config()

    bin_dir = _binaries.find_bin_dir(config.bin_dir)

    if config.data_dir is None:
        base_dir = pathlib.Path(tempfile.mkdtemp(prefix="pgtest-"))
        temporary = True
    else:
        base_dir = config.data_dir
        temporary = False

    try:
        return await _provision(
            bin_dir, base_dir, config, temporary=temporary
        )
    except BaseException:
        if temporary:
            shutil.rmtree(base_dir, ignore_errors=True)
        raise


async def stop(instance: Instance | None) -> None:
    if instance is None:
        return
    await instance.stop()


@contextlib.asynccontextmanager
async def instance(config: Config | None = None) -> AsyncIterator[Instance]:
    inst = await start(config)
    try:
        yield inst
    finally:
        await inst.stop()
