# SPDX-PackageName: pgtest
# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: Copyright pgtest contributors.


from ._base import (
    InstanceTestCase,
    TestCase,
    find_postgres,
)


__all__ = (
    "InstanceTestCase",
    "TestCase",
    "find_postgres",
)
