"""Enumerations for CLI exit codes."""
from __future__ import annotations

from enum import IntEnum


class ExitCode(IntEnum):
    """Process exit codes shared by every command.

    ``FAILURE`` covers denied access, validation failures and unhandled
    handler errors. A declined confirmation is a user choice and exits ``OK``.
    """

    OK = 0
    FAILURE = 1
