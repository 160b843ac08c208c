"""Shared types for consulsync.

This module defines types and enums used by both the CLI and the sync engine.
"""

from __future__ import annotations

from enum import IntEnum


class ExitCode(IntEnum):
    """Process exit status.

    The CLI supervisor is the only place that decides which of these the
    process exits with.
    """

    OK = 0
    ERROR = 10
    INTERRUPT = 11
    PARSE_FLAGS_ERROR = 12
    RUNNER_ERROR = 13
    CONFIG_ERROR = 14
