# SPDX-PackageName: pgtest
# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: Copyright pgtest contributors.

"""End-to-end tests against a real PostgreSQL installation.

Skipped when no PostgreSQL binaries can be found, or when running as
root.
"""

from __future__ import annotations

import asyncio
import logging
import pathlib
import tempfile

import asyncpg

import pgtest
from pgtest import errors
from pgtest._internal import _testbase as tb


class TestStartStop(tb.TestCase):
    def setUp(self) -> None:
        self.bin_dir = tb.find_postgres()

    async def test_create_table(self) -> None:
        pg = await pgtest.start(pgtest.Config())
        base_dir = pg.data_dir.parent
        try:
            async with pg.pool.acquire() as conn:
                await conn.execute("CREATE TABLE test (val text)")
                await conn.execute("INSERT INTO test VALUES ('a'), ('b')")
                count = await conn.fetchval("SELECT count(*) FROM test")
            self.assertEqual(count, 2)
            self.assertTrue(base_dir.exists())
            self.assertTrue(pg.running())
        finally:
            await pg.stop()

        self.assertFalse(pg.running())
        self.assertFalse(base_dir.exists())

    async def test_with_bin_dir(self) -> None:
        async with pgtest.instance(pgtest.Config(bin_dir=self.bin_dir)) as pg:
            self.assertTrue(pg.host)
            self.assertEqual(pg.user, "test")
            self.assertEqual(pg.database, "test")
            async with pg.pool.acquire() as conn:
                await conn.execute("CREATE TABLE test (val text)")

    async def test_additional_args(self) -> None:
        config = pgtest.Config(additional_args=["-c", "wal_level=logical"])
        async with pgtest.instance(config) as pg:
            wal_level = await pg.pool.fetchval("SHOW wal_level")
        self.assertEqual(wal_level, "logical")

    async def test_tcp_disabled_and_fsync_off(self) -> None:
        async with pgtest.instance() as pg:
            listen = await pg.pool.fetchval("SHOW listen_addresses")
            fsync = await pg.pool.fetchval("SHOW fsync")
            db = await pg.pool.fetchval("SELECT current_database()")
        self.assertEqual(listen, "")
        self.assertEqual(fsync, "off")
        self.assertEqual(db, "test")

    async def test_connect_args(self) -> None:
        async with pgtest.instance() as pg:
            conn = await asyncpg.connect(**pg.get_connect_args())
            try:
                self.assertEqual(await conn.fetchval("SELECT 1"), 1)
            finally:
                await conn.close()

            conn = await asyncpg.connect(pg.dsn)
            try:
                self.assertEqual(
                    await conn.fetchval("SELECT current_user"), "test"
                )
            finally:
                await conn.close()

    async def test_concurrent_instances(self) -> None:
        pg1, pg2 = await asyncio.gather(pgtest.start(), pgtest.start())
        try:
            self.assertNotEqual(pg1.host, pg2.host)
            self.assertNotEqual(pg1.data_dir, pg2.data_dir)

            await pg1.pool.execute("CREATE TABLE only_here (val text)")
            exists = await pg2.pool.fetchval(
                "SELECT to_regclass('only_here') IS NOT NULL"
            )
            self.assertFalse(exists)

            pid1 = await pg1.pool.fetchval("SELECT pg_backend_pid()")
            pid2 = await pg2.pool.fetchval("SELECT pg_backend_pid()")
            self.assertIsNotNone(pid1)
            self.assertIsNotNone(pid2)
        finally:
            await asyncio.gather(pg1.stop(), pg2.stop())

        self.assertFalse(pg1.data_dir.parent.exists())
        self.assertFalse(pg2.data_dir.parent.exists())

    async def test_persistent_data_dir(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            config = pgtest.Config(data_dir=pathlib.Path(tmp))

            async with pgtest.instance(config) as pg:
                await pg.pool.execute("CREATE TABLE kept (val text)")
                await pg.pool.execute("INSERT INTO kept VALUES ('x')")

            self.assertTrue(
                (pathlib.Path(tmp) / "data" / "PG_VERSION").exists()
            )

            # A second run reuses the cluster and the test database.
            async with pgtest.instance(config) as pg:
                val = await pg.pool.fetchval("SELECT val FROM kept")
            self.assertEqual(val, "x")

    async def test_invalid_pool_options(self) -> None:
        config = pgtest.Config(pool_options={"min_size": 5, "max_size": 1})
        with self.assertRaisesRegex(
            errors.ConfigParseError, "invalid connection pool configuration"
        ) as cm:
            await pgtest.start(config)

        # The server was shut down and its output captured.
        self.assertIsInstance(cm.exception.stderr, str)

    async def test_bad_server_argument(self) -> None:
        config = pgtest.Config(additional_args=["-c", "no_such_setting=1"])
        with self.assertRaises(errors.ReadinessTimeoutError) as cm:
            await pgtest.start(config)

        self.assertIn("no_such_setting", cm.exception.stderr)

    async def test_query_tracing(self) -> None:
        logger = logging.getLogger("pgtest.query")
        async with pgtest.instance() as pg:
            with self.assertLogs(logger, level=pgtest.TRACE) as cm:
                await pg.pool.execute("SELECT 42")
                # Query loggers are called soon, not synchronously.
                await asyncio.sleep(0.01)

        self.assertTrue(
            any("SELECT 42" in r.getMessage() for r in cm.records)
        )


class TestSharedInstance(tb.InstanceTestCase):
    CONFIG = pgtest.Config(trace_queries=False)

    async def test_shared_instance_01(self) -> None:
        async with self.instance.pool.acquire() as conn:
            await conn.execute("CREATE TABLE shared (val text)")
            await conn.execute("INSERT INTO shared VALUES ('one')")

    async def test_shared_instance_02(self) -> None:
        version = await self.instance.pool.fetchval("SHOW server_version")
        self.assertTrue(version)
        self.assertTrue(self.instance.running())
