"""Sync operations mirroring a Consul KV prefix into a directory.

Architecture:
    Supervisor → Runner → SyncProcessor → KVLister (ConsulClient)

Components:
- **Runner**: One per configuration generation. Owns the poll timer and the
  PID file, runs passes in a background thread and reports errors and
  completion as RunnerEvents on a queue
- **SyncProcessor**: One pass: list the prefix, compare SHA-256 of each
  value with the local file, write what changed (or log it in dry mode)
- **RetryPolicy**: Exponential backoff decisions for listing calls
- **RetryingLister**: Retries transient listing errors using a RetryPolicy

All public symbols are re-exported here.
"""

from consulsync.client.sync.processor import SyncProcessor, leaf_name
from consulsync.client.sync.retry import (
    RetryingLister,
    RetryPolicy,
    is_transient,
    retry_with_backoff,
)
from consulsync.client.sync.runner import Runner
from consulsync.client.sync.types import (
    DoneCallback,
    ErrorCallback,
    ListError,
    PidFileError,
    RunnerEvent,
    RunnerEventType,
    RunnerState,
    SupervisorState,
    SyncError,
    SyncOutcome,
    WriteError,
)

__all__ = [
    # Processor
    "SyncProcessor",
    "leaf_name",
    # Retry
    "RetryPolicy",
    "RetryingLister",
    "is_transient",
    "retry_with_backoff",
    # Runner
    "Runner",
    # Types
    "DoneCallback",
    "ErrorCallback",
    "ListError",
    "PidFileError",
    "RunnerEvent",
    "RunnerEventType",
    "RunnerState",
    "SupervisorState",
    "SyncError",
    "SyncOutcome",
    "WriteError",
]
