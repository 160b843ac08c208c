"""Runner driving sync passes for one configuration generation.

This module provides:
- Runner: Owns the poll timer, the PID file and the SyncProcessor

A Runner lives from one configuration load to the next. The supervisor
creates one, starts it, and stops it before a reload builds the next, so
at most one Runner writes into the destination at any time.

Lifecycle:
    CREATED --start()--> RUNNING --stop()--> STOPPED

Errors and completion are never raised to the caller. They are posted as
RunnerEvents on the runner's event queue, which the owner reads.
"""

from __future__ import annotations

import json
import logging
import os
import queue
import threading
from pathlib import Path
from typing import TYPE_CHECKING

from consulsync.client import clients
from consulsync.client.api import KVError
from consulsync.client.sync.processor import SyncProcessor
from consulsync.client.sync.types import (
    PidFileError,
    RunnerEvent,
    RunnerEventType,
    RunnerState,
    SyncError,
)
from consulsync.core.config import Config

if TYPE_CHECKING:
    from consulsync.client.api import KVLister

logger = logging.getLogger(__name__)


class Runner:
    """Background sync loop for one configuration generation.

    The loop runs in a daemon thread: it writes the PID file, makes sure
    the destination exists, runs a first pass immediately and then one
    pass every interval. It ends on the first error, after the first pass
    in once or dry mode, or when stop() is called.

    Usage:
        runner = Runner(config, once=True)
        runner.start()
        event = runner.events.get()
        runner.stop()
    """

    def __init__(
        self,
        config: Config,
        once: bool = False,
        dry: bool = False,
        events: queue.SimpleQueue[object] | None = None,
        client: KVLister | None = None,
    ) -> None:
        """Initialize the runner.

        Args:
            config: Configuration for this generation. It is copied, so the
                caller's object is never modified.
            once: Stop after the first successful pass.
            dry: Log intended writes instead of performing them.
            events: Queue receiving RunnerEvents. Shared with the owner's
                other event sources; a private queue is created if omitted.
            client: KV client to use. When omitted one is built from the
                configuration when the loop starts, and closed on stop().
        """
        self._config = Config.default().merge(config)
        self._config.finalize()
        self._once = once
        self._dry = dry
        self._events: queue.SimpleQueue[object] = (
            events if events is not None else queue.SimpleQueue()
        )
        self._client = client
        self._owns_client = client is None

        self._state = RunnerState.CREATED
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._passes = 0

        logger.info(f"Creating new runner (dry: {dry}, once: {once})")
        logger.debug(
            "Final config: %s", json.dumps(self._config.describe(), default=str)
        )

    @property
    def state(self) -> RunnerState:
        """Get current runner state."""
        return self._state

    @property
    def config(self) -> Config:
        """Get the finalized configuration of this generation."""
        return self._config

    @property
    def events(self) -> queue.SimpleQueue[object]:
        """Get the queue RunnerEvents are posted to."""
        return self._events

    @property
    def passes(self) -> int:
        """Get the number of sync passes run so far."""
        return self._passes

    def start(self) -> None:
        """Start the sync loop in a background thread.

        A runner can only be started once.
        """
        with self._lock:
            if self._state != RunnerState.CREATED:
                logger.warning(f"Runner cannot be started from state {self._state.name}")
                return

            self._state = RunnerState.RUNNING
            self._thread = threading.Thread(
                target=self._run,
                name="Runner",
                daemon=True,
            )
            self._thread.start()
            logger.info("Runner starting")

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the runner. Safe to call more than once.

        Removes the PID file; failing to do so is only logged. A pass still
        running after timeout ends before its next write.

        Args:
            timeout: Maximum time to wait for an in-flight pass to finish
        """
        with self._lock:
            if self._state == RunnerState.STOPPED:
                return

            logger.info("Runner stopping")
            self._state = RunnerState.STOPPED
            self._stop_event.set()

            thread = self._thread
            if thread and thread.is_alive() and thread is not threading.current_thread():
                thread.join(timeout=timeout)
                if thread.is_alive():
                    logger.warning(f"Runner thread still busy after {timeout}s")

            try:
                self._delete_pid()
            except PidFileError as e:
                logger.warning(str(e))

            if self._owns_client and self._client is not None:
                self._client.close()
            self._thread = None
            logger.info("Runner stopped")

    def wait(self, timeout: float | None = None) -> bool:
        """Wait for the sync loop thread to end.

        Returns:
            True if the loop is not running when this returns.
        """
        thread = self._thread
        if thread is None:
            return True
        thread.join(timeout=timeout)
        return not thread.is_alive()

    def _run(self) -> None:
        """Main sync loop."""
        logger.debug("Runner loop started")
        if self._stop_event.is_set():
            return

        try:
            self._store_pid()
        except PidFileError as e:
            logger.error(str(e))
            self._emit(RunnerEventType.ERROR, e)
            return

        if self._client is None:
            try:
                self._client = clients.create_kv_client(
                    self._config.consul, cancel=self._stop_event
                )
            except KVError as e:
                error = SyncError(f"creating consul client failed: {e}")
                logger.error(str(error))
                self._emit(RunnerEventType.ERROR, error)
                return

        processor = SyncProcessor(
            self._client,
            self._config,
            once=self._once,
            dry=self._dry,
            on_error=self._on_error,
            on_done=self._on_done,
            cancel=self._stop_event,
        )

        if not processor.prepare():
            return

        interval = self._config.interval or 0
        while not self._stop_event.is_set():
            try:
                outcome = processor.process()
            except Exception as e:
                logger.exception("Unexpected error during sync pass")
                self._emit(RunnerEventType.ERROR, SyncError(f"sync pass failed: {e}"))
                break

            self._passes += 1
            if outcome.error is not None or outcome.done:
                break
            if self._stop_event.wait(interval):
                break

        logger.debug("Runner loop ended")

    def _on_error(self, error: Exception) -> None:
        self._emit(RunnerEventType.ERROR, error)

    def _on_done(self) -> None:
        logger.info("Received finish")
        self._emit(RunnerEventType.DONE)

    def _emit(self, kind: RunnerEventType, error: Exception | None = None) -> None:
        """Post an event for the owner, unless the runner was stopped."""
        if self._stop_event.is_set():
            logger.debug(f"Dropping {kind.name} event from stopped runner")
            return
        self._events.put(RunnerEvent(runner=self, kind=kind, error=error))

    def _store_pid(self) -> None:
        """Write the process id to the PID file, if one is configured."""
        path = self._config.pid_file
        if not path:
            return

        logger.info(f"Creating pid file at {path!r}")
        try:
            Path(path).write_text(str(os.getpid()))
        except OSError as e:
            raise PidFileError(f"could not write pid file {path!r}: {e}") from e

    def _delete_pid(self) -> None:
        """Remove the PID file. A missing file is not an error."""
        path = self._config.pid_file
        if not path:
            return

        logger.debug(f"Removing pid file at {path!r}")
        pid_path = Path(path)
        if pid_path.is_dir():
            raise PidFileError(f"could not remove pid file: {path!r} is a directory")
        try:
            pid_path.unlink()
        except FileNotFoundError:
            return
        except OSError as e:
            raise PidFileError(f"could not remove pid file {path!r}: {e}") from e
