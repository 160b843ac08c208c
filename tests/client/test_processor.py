"""Tests for the sync processor."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from pathlib import Path

import pytest

from consulsync.client.api import AuthenticationError, ConnectionFailedError
from consulsync.client.sync.processor import SyncProcessor, leaf_name
from consulsync.client.sync.types import ListError, WriteError
from consulsync.core.config import Config
from consulsync.core.hashing import compute_file_hash, compute_hash


class Recorder:
    """Collects processor callbacks."""

    def __init__(self) -> None:
        self.errors: list[Exception] = []
        self.done = 0

    def on_error(self, error: Exception) -> None:
        self.errors.append(error)

    def on_done(self) -> None:
        self.done += 1


@pytest.fixture
def recorder() -> Recorder:
    """Create a callback recorder."""
    return Recorder()


@pytest.fixture
def make_processor(
    lister, make_config: Callable[..., Config], recorder: Recorder  # type: ignore[no-untyped-def]
) -> Callable[..., SyncProcessor]:
    """Get a factory for processors wired to the fake store and recorder."""

    def _make(once: bool = False, dry: bool = False, **config: object) -> SyncProcessor:
        return SyncProcessor(
            lister,
            make_config(**config),
            once=once,
            dry=dry,
            on_error=recorder.on_error,
            on_done=recorder.on_done,
        )

    return _make


def tree(path: Path) -> dict[str, bytes]:
    """Read every file directly below path."""
    return {p.name: p.read_bytes() for p in sorted(path.iterdir())}


class TestLeafName:
    """Tests for leaf_name."""

    @pytest.mark.parametrize(
        ("key", "expected"),
        [
            ("prefix/a", "a"),
            ("a", "a"),
            ("deep/nested/key.json", "key.json"),
            ("prefix/folder/", ""),
        ],
    )
    def test_leaf(self, key: str, expected: str) -> None:
        """Should take the last path segment."""
        assert leaf_name(key) == expected


class TestHashing:
    """Tests for content fingerprints."""

    def test_file_and_payload_agree(self, tmp_path: Path) -> None:
        """Should give the same hash for a payload and a file holding it."""
        path = tmp_path / "f"
        path.write_bytes(b"payload" * 5000)
        assert compute_file_hash(path) == compute_hash(b"payload" * 5000)

    def test_differs_on_content(self) -> None:
        """Should give different hashes for different content."""
        assert compute_hash(b"1") != compute_hash(b"2")


class TestPrepare:
    """Tests for SyncProcessor.prepare."""

    def test_creates_destination(self, make_processor, destination: Path) -> None:  # type: ignore[no-untyped-def]
        """Should create a missing destination directory."""
        assert make_processor().prepare() is True
        assert destination.is_dir()

    def test_creates_nested_destination(  # type: ignore[no-untyped-def]
        self, make_processor, destination: Path
    ) -> None:
        """Should create missing parents too."""
        nested = destination / "a" / "b"
        assert make_processor(to=str(nested)).prepare() is True
        assert nested.is_dir()

    def test_dry_does_not_create(self, make_processor, destination: Path) -> None:  # type: ignore[no-untyped-def]
        """Should leave the filesystem alone in dry mode."""
        assert make_processor(dry=True).prepare() is True
        assert not destination.exists()

    def test_failure_is_reported(  # type: ignore[no-untyped-def]
        self, make_processor, recorder: Recorder, tmp_path: Path
    ) -> None:
        """Should report a WriteError when the directory cannot be created."""
        blocker = tmp_path / "file"
        blocker.write_text("not a directory")

        assert make_processor(to=str(blocker / "out")).prepare() is False
        assert len(recorder.errors) == 1
        assert isinstance(recorder.errors[0], WriteError)


class TestProcess:
    """Tests for SyncProcessor.process."""

    def test_writes_all_entries_once_mode(  # type: ignore[no-untyped-def]
        self, make_processor, lister, recorder: Recorder, destination: Path
    ) -> None:
        """Should create a file per key and signal done in once mode."""
        lister.entries = {"prefix/a": b"1", "prefix/b": b"2"}
        processor = make_processor(once=True)
        processor.prepare()

        outcome = processor.process()

        assert tree(destination) == {"a": b"1", "b": b"2"}
        assert outcome.success
        assert outcome.seen == 2
        assert outcome.written == [str(destination / "a"), str(destination / "b")]
        assert outcome.done is True
        assert recorder.done == 1
        assert recorder.errors == []

    def test_skips_identical_file(  # type: ignore[no-untyped-def]
        self, make_processor, lister, destination: Path
    ) -> None:
        """Should only write entries whose content differs."""
        destination.mkdir()
        (destination / "a").write_bytes(b"1")
        lister.entries = {"prefix/a": b"1", "prefix/b": b"2"}

        outcome = make_processor(once=True).process()

        assert outcome.skipped == [str(destination / "a")]
        assert outcome.written == [str(destination / "b")]
        assert tree(destination) == {"a": b"1", "b": b"2"}

    def test_overwrites_changed_file(  # type: ignore[no-untyped-def]
        self, make_processor, lister, destination: Path
    ) -> None:
        """Should replace a local file whose content differs."""
        destination.mkdir()
        (destination / "a").write_bytes(b"old and longer")
        lister.entries = {"prefix/a": b"new"}

        make_processor().process()

        assert (destination / "a").read_bytes() == b"new"

    def test_second_pass_writes_nothing(  # type: ignore[no-untyped-def]
        self, make_processor, lister, destination: Path
    ) -> None:
        """Should be idempotent for an unchanged store."""
        lister.entries = {"prefix/a": b"1", "prefix/b": b"2"}
        processor = make_processor()
        processor.prepare()

        first = processor.process()
        second = processor.process()

        assert len(first.written) == 2
        assert second.written == []
        assert len(second.skipped) == 2

    def test_round_trip_is_byte_identical(  # type: ignore[no-untyped-def]
        self, make_processor, lister, destination: Path
    ) -> None:
        """Should write the exact payload bytes."""
        payload = bytes(range(256)) + "héllo\r\n".encode()
        lister.entries = {"prefix/bin": payload}
        processor = make_processor()
        processor.prepare()

        processor.process()

        assert (destination / "bin").read_bytes() == payload

    def test_skips_folder_keys(  # type: ignore[no-untyped-def]
        self, make_processor, lister, destination: Path
    ) -> None:
        """Should ignore keys with an empty last segment."""
        lister.entries = {"prefix/": b"", "prefix/sub/": b"", "prefix/a": b"1"}
        processor = make_processor()
        processor.prepare()

        outcome = processor.process()

        assert tree(destination) == {"a": b"1"}
        assert outcome.seen == 3
        assert outcome.written == [str(destination / "a")]

    def test_nested_keys_use_leaf(  # type: ignore[no-untyped-def]
        self, make_processor, lister, destination: Path
    ) -> None:
        """Should write nested keys flat, named by their last segment."""
        lister.entries = {"prefix/sub/deep/config.json": b"{}"}
        processor = make_processor()
        processor.prepare()

        processor.process()

        assert tree(destination) == {"config.json": b"{}"}

    def test_empty_listing(  # type: ignore[no-untyped-def]
        self, make_processor, recorder: Recorder, destination: Path, caplog
    ) -> None:
        """Should warn and complete without writes or errors."""
        processor = make_processor(once=True)
        processor.prepare()

        with caplog.at_level(logging.WARNING, logger="consulsync"):
            outcome = processor.process()

        assert outcome.success
        assert outcome.written == []
        assert recorder.errors == []
        assert recorder.done == 1
        assert "empty or does not exist" in caplog.text

    def test_not_done_in_polling_mode(  # type: ignore[no-untyped-def]
        self, make_processor, lister, recorder: Recorder
    ) -> None:
        """Should not signal done without once or dry."""
        lister.entries = {"prefix/a": b"1"}
        processor = make_processor()
        processor.prepare()

        outcome = processor.process()

        assert outcome.done is False
        assert recorder.done == 0

    def test_list_error(  # type: ignore[no-untyped-def]
        self, make_processor, lister, recorder: Recorder, destination: Path
    ) -> None:
        """Should forward listing failures and end the pass."""
        lister.error = ConnectionFailedError("refused")
        processor = make_processor(once=True)
        processor.prepare()

        outcome = processor.process()

        assert not outcome.success
        assert isinstance(outcome.error, ListError)
        assert isinstance(outcome.error.__cause__, ConnectionFailedError)
        assert recorder.errors == [outcome.error]
        assert recorder.done == 0
        assert tree(destination) == {}

    def test_list_error_is_not_retried(  # type: ignore[no-untyped-def]
        self, make_processor, lister
    ) -> None:
        """Should call the store exactly once per pass."""
        lister.error = AuthenticationError("denied", 403)
        make_processor().process()
        assert lister.calls == ["app/config"]

    def test_write_error_aborts_pass(  # type: ignore[no-untyped-def]
        self, make_processor, lister, recorder: Recorder, destination: Path
    ) -> None:
        """Should forward write failures and stop writing."""
        destination.mkdir()
        (destination / "a").mkdir()
        lister.entries = {"prefix/a": b"1", "prefix/b": b"2"}

        outcome = make_processor(once=True).process()

        assert isinstance(outcome.error, WriteError)
        assert outcome.error.path == str(destination / "a")
        assert recorder.errors == [outcome.error]
        assert recorder.done == 0
        assert not (destination / "b").exists()


class TestDryRun:
    """Tests for dry-run mode."""

    def test_no_filesystem_changes(  # type: ignore[no-untyped-def]
        self, make_processor, lister, recorder: Recorder, destination: Path
    ) -> None:
        """Should not create the destination or any file."""
        lister.entries = {"prefix/a": b"1", "prefix/b": b"2"}
        processor = make_processor(dry=True)
        processor.prepare()

        outcome = processor.process()

        assert not destination.exists()
        assert outcome.written == [str(destination / "a"), str(destination / "b")]
        assert recorder.done == 1

    def test_same_decisions_as_real_run(  # type: ignore[no-untyped-def]
        self, make_processor, lister, destination: Path
    ) -> None:
        """Should report the writes a real pass would perform."""
        destination.mkdir()
        (destination / "a").write_bytes(b"1")
        (destination / "b").write_bytes(b"stale")
        lister.entries = {"prefix/a": b"1", "prefix/b": b"2", "prefix/c": b"3"}

        dry = make_processor(dry=True).process()
        before = tree(destination)
        real = make_processor().process()

        assert before == {"a": b"1", "b": b"stale"}
        assert dry.written == real.written
        assert dry.skipped == real.skipped

    def test_logs_intended_writes(  # type: ignore[no-untyped-def]
        self, make_processor, lister, destination: Path, caplog
    ) -> None:
        """Should log each file it would write."""
        lister.entries = {"prefix/a": b"123"}

        with caplog.at_level(logging.INFO, logger="consulsync"):
            make_processor(dry=True).process()

        assert f"Would write {destination / 'a'} (3 bytes)" in caplog.text


class TestCancel:
    """Tests for ending a pass through the cancel event."""

    def test_no_writes_once_cancelled(  # type: ignore[no-untyped-def]
        self, lister, make_config, recorder: Recorder, destination: Path
    ) -> None:
        """Should end the pass quietly before writing anything."""
        lister.entries = {"prefix/a": b"1", "prefix/b": b"2"}
        cancel = threading.Event()
        processor = SyncProcessor(
            lister,
            make_config(),
            once=True,
            on_error=recorder.on_error,
            on_done=recorder.on_done,
            cancel=cancel,
        )
        processor.prepare()
        cancel.set()

        outcome = processor.process()

        assert tree(destination) == {}
        assert outcome.written == []
        assert outcome.done is False
        assert recorder.errors == []
        assert recorder.done == 0

    def test_skips_still_reported(  # type: ignore[no-untyped-def]
        self, lister, make_config, destination: Path
    ) -> None:
        """Should still count unchanged files before the first write."""
        destination.mkdir()
        (destination / "a").write_bytes(b"1")
        lister.entries = {"prefix/a": b"1", "prefix/b": b"2"}
        cancel = threading.Event()
        cancel.set()

        outcome = SyncProcessor(lister, make_config(), cancel=cancel).process()

        assert outcome.skipped == [str(destination / "a")]
        assert not (destination / "b").exists()
