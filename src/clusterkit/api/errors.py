# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Error taxonomy for clusterkit.

The lifecycle monitor, the schedulers and operator-facing admin calls classify
failures with these types to decide between retry, escalation and fast-fail.
Classification happens where the failure originates (the probe boundary, the
persistence boundary); callers never unwrap generic wrappers.
"""

from collections.abc import Sequence


class ClusterkitError(Exception):
    """Base class for all clusterkit errors."""

    ...


class RetryableError(ClusterkitError):
    """A transient condition; the owner of the call may retry according to its policy."""

    ...


class PermanentError(ClusterkitError):
    """A permanent condition; retrying would be pointless."""

    ...


# ---- persistence / startup ----------------------------------------------------


class PersistenceError(ClusterkitError):
    """The persistence collaborator failed to store or load state."""

    ...


class RegistrationError(PermanentError):
    """Framework identity could not be recorded; startup must abort."""

    ...


class PlacementError(PermanentError):
    """A task requirement cannot be placed as stated (e.g. a volume on an admin task)."""

    ...


# ---- administrative commands --------------------------------------------------


class CommandError(ClusterkitError):
    """
    An administrative command against a running node failed.

    Attributes:
        command: Admin command name (e.g. "cleanup", "repair").
        keyspace: Target keyspace, if any.
        families: Target column families (empty = all).
    """

    def __init__(
        self,
        message: str,
        *,
        command: str | None = None,
        keyspace: str | None = None,
        families: Sequence[str] = (),
    ) -> None:
        super().__init__(message)
        self.command = command
        self.keyspace = keyspace
        self.families = tuple(families)


class CommunicationError(CommandError):
    """The admin channel failed (transport error, unexpected exit, broken output)."""

    ...


class InvalidArgumentError(CommandError, PermanentError):
    """The node rejected the arguments (unknown keyspace or column family)."""

    ...


class CommandInterrupted(CommandError):
    """The wait for the command was interrupted (deadline exceeded or process killed by a signal)."""

    ...


# ---- health probe -------------------------------------------------------------


class ProbeUnavailable(CommunicationError, RetryableError):
    """
    The admin channel is temporarily unreachable (connection refused, node still
    starting, long GC pause). This is the only failure class the lifecycle
    monitor retries.
    """

    ...


class ProbeError(CommandError, PermanentError):
    """The probe answered but the answer is unusable (e.g. unknown operational mode)."""

    ...
