"""One synchronization pass between a KV prefix and a local directory.

This module provides:
- SyncProcessor: Lists the prefix and writes every changed key to disk
- leaf_name: Maps a key to the file name it is written under

Each key becomes a file named after the last segment of the key, directly
inside the destination directory. A file is only written when its SHA-256
differs from the remote value, so repeated passes over an unchanged store
do not touch the disk.
"""

from __future__ import annotations

import logging
import os
import threading
from pathlib import Path
from typing import TYPE_CHECKING

from consulsync.client.api import KVError
from consulsync.client.sync.types import (
    DoneCallback,
    ErrorCallback,
    ListError,
    SyncOutcome,
    WriteError,
)
from consulsync.core.hashing import compute_file_hash, compute_hash

if TYPE_CHECKING:
    from consulsync.client.api import KVLister, KVPair
    from consulsync.core.config import Config

logger = logging.getLogger(__name__)


def leaf_name(key: str) -> str:
    """Get the last path segment of a key.

    Keys ending in "/" denote folders and give an empty name.
    """
    return key.split("/")[-1]


class SyncProcessor:
    """Performs sync passes for one Runner generation.

    The processor never retries and never raises out of process(): list
    and write failures are handed to on_error and end the pass.

    Usage:
        processor = SyncProcessor(client, config, on_error=errors.append)
        processor.prepare()
        outcome = processor.process()
    """

    def __init__(
        self,
        client: KVLister,
        config: Config,
        once: bool = False,
        dry: bool = False,
        on_error: ErrorCallback | None = None,
        on_done: DoneCallback | None = None,
        cancel: threading.Event | None = None,
    ) -> None:
        """Initialize the processor.

        Args:
            client: Lists the remote prefix.
            config: Finalized configuration; from_ and to are used.
            once: Report completion after the first successful pass.
            dry: Only log what would be written. Also reports completion
                after the first successful pass.
            on_error: Called with a ListError or WriteError.
            on_done: Called after a successful pass in once or dry mode.
            cancel: Once set, the current pass ends before its next write
                without reporting an error or completion.
        """
        self._client = client
        self._prefix = config.from_ or ""
        self._destination = Path(config.to or "")
        self._once = once
        self._dry = dry
        self._on_error = on_error
        self._on_done = on_done
        self._cancel = cancel if cancel is not None else threading.Event()

    @property
    def destination(self) -> Path:
        """Get the directory files are written into."""
        return self._destination

    def prepare(self) -> bool:
        """Create the destination directory if it is missing.

        Nothing is created in dry mode.

        Returns:
            True if the destination is usable, False if an error was reported.
        """
        if self._destination.is_dir():
            return True

        if self._dry:
            logger.info(f"Destination {self._destination} does not exist, it would be created")
            return True

        logger.info(f"Destination {self._destination} does not exist, creating it")
        try:
            self._destination.mkdir(mode=0o777, parents=True, exist_ok=True)
        except OSError as e:
            self._fail(WriteError(str(self._destination), e))
            return False
        return True

    def process(self) -> SyncOutcome:
        """Run one sync pass.

        Returns:
            What the pass did. On failure, outcome.error holds the error
            that was also passed to on_error.
        """
        outcome = SyncOutcome()

        try:
            pairs = self._client.list(self._prefix)
        except KVError as e:
            outcome.error = ListError(f"listing {self._prefix!r} failed: {e}")
            outcome.error.__cause__ = e
            self._fail(outcome.error)
            return outcome

        if not pairs:
            logger.warning(f"Consul path ({self._prefix}) empty or does not exist")
        else:
            logger.info(f"Consul path: {self._prefix}")

        for pair in pairs:
            outcome.seen += 1
            name = leaf_name(pair.key)
            if not name:
                continue

            target = self._destination / name
            if self._local_hash(target) == compute_hash(pair.value):
                logger.info(f"Skipping: {pair.key}")
                outcome.skipped.append(str(target))
                continue

            if self._cancel.is_set():
                logger.debug(f"Pass cancelled before writing {target}")
                return outcome

            try:
                self._save(target, pair)
            except OSError as e:
                outcome.error = WriteError(str(target), e)
                self._fail(outcome.error)
                return outcome
            outcome.written.append(str(target))

        if self._once or self._dry:
            outcome.done = True
            if self._on_done is not None:
                self._on_done()

        return outcome

    def _local_hash(self, path: Path) -> str | None:
        """Hash a local file, or None if it cannot be read."""
        try:
            return compute_file_hash(path)
        except OSError:
            return None

    def _save(self, target: Path, pair: KVPair) -> None:
        if self._dry:
            logger.info(f"Would write {target} ({len(pair.value)} bytes)")
            content = pair.value.decode(errors="replace")
            logger.debug(f"Content of {target}:{os.linesep}{content}")
            return

        target.write_bytes(pair.value)
        logger.info(f"Saved: {target}")

    def _fail(self, error: Exception) -> None:
        logger.error(str(error))
        if self._on_error is not None:
            self._on_error(error)
