"""Shared types and dataclasses for sync operations.

This module provides:
- SyncError, ListError, WriteError, PidFileError: Exception classes
- SyncOutcome: Result of one sync pass
- RunnerState, SupervisorState: Lifecycle states
- RunnerEventType, RunnerEvent: Messages from a Runner to its owner
- Type aliases for callbacks
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import TYPE_CHECKING

from consulsync.core.types import ExitCode

if TYPE_CHECKING:
    from consulsync.client.sync.runner import Runner


class SyncError(Exception):
    """Base exception for failures inside a Runner generation.

    Attributes:
        exit_status: Exit status the process should end with, or None to
            use the generic runner error status.
    """

    exit_status: ExitCode | None = None


class ListError(SyncError):
    """Listing the remote prefix failed."""


class WriteError(SyncError):
    """Writing into the destination directory failed."""

    def __init__(self, path: str, reason: Exception) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"could not write {path}: {reason}")


class PidFileError(SyncError):
    """Creating or removing the PID file failed."""


@dataclass
class SyncOutcome:
    """Result of one sync pass.

    In dry-run mode written lists the files that would have been written.
    """

    seen: int = 0
    written: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    error: Exception | None = None
    done: bool = False

    @property
    def success(self) -> bool:
        """Whether the pass finished without error."""
        return self.error is None


class RunnerState(Enum):
    """Lifecycle of a Runner. There is no way back from STOPPED."""

    CREATED = auto()
    RUNNING = auto()
    STOPPED = auto()


class SupervisorState(Enum):
    """Lifecycle of the CLI supervisor."""

    STARTING = auto()
    WATCHING = auto()
    RELOADING = auto()
    TERMINATING = auto()


class RunnerEventType(Enum):
    """What a Runner is reporting."""

    ERROR = auto()
    DONE = auto()


@dataclass
class RunnerEvent:
    """Message from a Runner to whoever owns its event queue."""

    runner: Runner
    kind: RunnerEventType
    error: Exception | None = None


# Type aliases for processor callbacks
ErrorCallback = Callable[[Exception], None]
DoneCallback = Callable[[], None]
