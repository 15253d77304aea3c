# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
clusterkit public error contracts.

Callers branch on these classes to choose between retry, escalation and
fast-fail.
"""

from .errors import (
    ClusterkitError,
    CommandError,
    CommandInterrupted,
    CommunicationError,
    InvalidArgumentError,
    PermanentError,
    PersistenceError,
    PlacementError,
    ProbeError,
    ProbeUnavailable,
    RegistrationError,
    RetryableError,
)

__all__ = [
    "ClusterkitError",
    "CommandError",
    "CommandInterrupted",
    "CommunicationError",
    "InvalidArgumentError",
    "PermanentError",
    "PersistenceError",
    "PlacementError",
    "ProbeError",
    "ProbeUnavailable",
    "RegistrationError",
    "RetryableError",
]
