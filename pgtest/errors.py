# SPDX-PackageName: pgtest
# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: Copyright pgtest contributors.

"""Exceptions raised while provisioning or tearing down an instance."""

from __future__ import annotations


__all__ = (
    "AbortedError",
    "BinaryNotFoundError",
    "BootstrapError",
    "ConfigParseError",
    "InitializationError",
    "InstanceError",
    "PoolOpenError",
    "ProcessSpawnError",
    "ReadinessTimeoutError",
    "SignalError",
)


class InstanceError(Exception):
    pass


class BinaryNotFoundError(InstanceError):
    pass


class InitializationError(InstanceError):
    def __init__(self, msg: str, *, output: str = "") -> None:
        super().__init__(msg)
        self.output = output


class ProcessSpawnError(InstanceError):
    pass


class SignalError(InstanceError):
    pass


class AbortedError(InstanceError):
    """Provisioning failed at a stage that may have had a server running.

    If a server was spawned, it has been stopped by the time this is
    raised and whatever it wrote to its standard streams is kept in
    *stdout* and *stderr*.
    """

    def __init__(
        self,
        msg: str,
        *,
        stdout: str = "",
        stderr: str = "",
    ) -> None:
        super().__init__(msg)
        self.stdout = stdout
        self.stderr = stderr


class ConfigParseError(AbortedError):
    pass


class ReadinessTimeoutError(AbortedError):
    pass


class BootstrapError(AbortedError):
    pass


class PoolOpenError(AbortedError):
    pass
