# SPDX-PackageName: pgtest
# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: Copyright pgtest contributors.

"""Child processes whose output is drained while they run.

PostgreSQL logs to stderr for as long as it runs.  If nobody reads the
pipe, the server blocks as soon as the pipe buffer fills up, so both
streams are read by daemon threads into bounded buffers that are only
inspected when the server fails or is stopped.
"""

from __future__ import annotations
from typing import IO, TYPE_CHECKING

import collections
import functools
import logging
import threading

if TYPE_CHECKING:
    import subprocess


logger = logging.getLogger(__name__)

# Only the tail of the output is kept.
OUTPUT_MAX_LINES = 1000
# Longer lines are split so one runaway line cannot grow without bound.
OUTPUT_MAX_LINE_LENGTH = 8192
# How long teardown waits for the readers to hit end of file.
OUTPUT_JOIN_TIMEOUT = 5.0


class OutputCollector:
    """Reads a text stream to EOF on a daemon thread.

    The last *max_lines* lines are kept; the stream is closed by the
    reader once it is exhausted.
    """

    def __init__(
        self,
        stream: IO[str],
        *,
        name: str,
        max_lines: int = OUTPUT_MAX_LINES,
    ) -> None:
        self._stream = stream
        self._name = name
        self._lines: collections.deque[str] = collections.deque(
            maxlen=max_lines
        )
        self._lock = threading.Lock()
        self._thread = threading.Thread(
            target=self._drain,
            name=name,
            daemon=True,
        )

    def start(self) -> None:
        self._thread.start()

    def join(self, timeout: float | None = OUTPUT_JOIN_TIMEOUT) -> bool:
        """Wait for end of file; return whether the reader finished."""
        self._thread.join(timeout)
        if self._thread.is_alive():
            logger.debug("%s still open after %ss", self._name, timeout)
            return False
        return True

    def getvalue(self) -> str:
        with self._lock:
            return "".join(self._lines)

    def _drain(self) -> None:
        read = functools.partial(
            self._stream.readline, OUTPUT_MAX_LINE_LENGTH
        )
        try:
            for line in iter(read, ""):
                with self._lock:
                    self._lines.append(line)
                logger.debug("%s: %s", self._name, line.rstrip("\n"))
        finally:
            self._stream.close()


class ServerProcess:
    """A spawned server with both output streams being drained.

    :attr:`stdout` and :attr:`stderr` hold the text collected so far.
    Call :meth:`join_output` after the process has exited to wait for
    the rest of it.
    """

    def __init__(self, popen: subprocess.Popen[str]) -> None:
        if popen.stdout is None or popen.stderr is None:
            raise ValueError("both stdout and stderr must be piped")

        self.popen = popen
        self._stdout = OutputCollector(
            popen.stdout, name=f"postgres[{popen.pid}] stdout"
        )
        self._stderr = OutputCollector(
            popen.stderr, name=f"postgres[{popen.pid}] stderr"
        )
        self._stdout.start()
        self._stderr.start()

    def __repr__(self) -> str:
        return f"<ServerProcess pid={self.pid} returncode={self.returncode}>"

    @property
    def pid(self) -> int:
        return self.popen.pid

    @property
    def returncode(self) -> int | None:
        return self.popen.returncode

    @property
    def stdout(self) -> str:
        return self._stdout.getvalue()

    @property
    def stderr(self) -> str:
        return self._stderr.getvalue()

    def poll(self) -> int | None:
        return self.popen.poll()

    def wait(self, timeout: float | None = None) -> int:
        return self.popen.wait(timeout)

    def send_signal(self, sig: int) -> None:
        self.popen.send_signal(sig)

    def kill(self) -> None:
        self.popen.kill()

    def join_output(self, timeout: float = OUTPUT_JOIN_TIMEOUT) -> bool:
        # Both readers get a chance even if the first one times out.
        done_out = self._stdout.join(timeout)
        done_err = self._stderr.join(timeout)
        return done_out and done_err
