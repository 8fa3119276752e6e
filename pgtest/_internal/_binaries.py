# SPDX-PackageName: pgtest
# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: Copyright pgtest contributors.

"""Locate the directory holding the PostgreSQL server executables."""

from __future__ import annotations
from typing import TYPE_CHECKING

import logging
import os
import pathlib
import shutil

from pgtest import errors

if TYPE_CHECKING:
    from collections.abc import Iterable


logger = logging.getLogger(__name__)

INITDB = "initdb"
POSTGRES = "postgres"

# Debian and Ubuntu install every major version under its own
# /usr/lib/postgresql/<version>/bin and keep initdb out of PATH.
DEFAULT_SEARCH_ROOTS: tuple[pathlib.Path, ...] = (
    pathlib.Path("/usr/lib/postgresql"),
)


def _find_in_path() -> pathlib.Path | None:
    path = shutil.which(INITDB)
    if not path:
        return None
    else:
        return pathlib.Path(path).parent


def _scan_root(root: pathlib.Path) -> pathlib.Path | None:
    if not root.is_dir():
        return None

    # Listing errors on a directory that exists are real errors.
    with os.scandir(root) as it:
        entries = sorted(it, key=lambda e: e.name)

    for entry in entries:
        if entry.name == INITDB and not entry.is_dir():
            return root

    for entry in entries:
        if not entry.is_dir():
            continue
        bin_dir = root / entry.name / "bin"
        if (bin_dir / INITDB).exists():
            return bin_dir

    return None


def find_bin_dir(
    bin_dir: pathlib.Path | str | None = None,
    *,
    search_roots: Iterable[pathlib.Path | str] = DEFAULT_SEARCH_ROOTS,
) -> pathlib.Path:
    """Return the directory containing ``initdb`` and ``postgres``.

    Without *bin_dir*, ``PATH`` is consulted first.  Then *bin_dir* and
    each of *search_roots* is scanned in order, both for ``initdb``
    itself and for ``<subdir>/bin/initdb`` layouts where one root holds
    several versioned installations.  The first match wins.
    """
    if not bin_dir:
        found = _find_in_path()
        if found is not None:
            logger.debug("found %s in PATH: %s", INITDB, found)
            return found

    roots: list[pathlib.Path] = []
    if bin_dir:
        roots.append(pathlib.Path(bin_dir))
    roots.extend(pathlib.Path(r) for r in search_roots)

    for root in roots:
        found = _scan_root(root)
        if found is not None:
            logger.debug("found %s under %s: %s", INITDB, root, found)
            return found

    raise errors.BinaryNotFoundError(
        "could not find PostgreSQL executables; install PostgreSQL, "
        "add its bin directory to PATH, or set PGTEST_BIN_DIR"
    )
