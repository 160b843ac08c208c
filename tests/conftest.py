"""Shared fixtures for consulsync tests."""

from __future__ import annotations

import logging
import os
import signal
import time
from collections.abc import Callable, Iterable, Iterator, Sequence
from pathlib import Path

import pytest

from consulsync.client.api import KVPair
from consulsync.core.config import Config


class FakeLister:
    """In-memory KVLister.

    Entries are returned in insertion order, like Consul returns them
    sorted by key.
    """

    def __init__(self, entries: dict[str, bytes] | None = None) -> None:
        self.entries: dict[str, bytes] = dict(entries or {})
        self.error: Exception | None = None
        self.calls: list[str] = []
        self.closed = False

    def list(self, prefix: str) -> Sequence[KVPair]:
        self.calls.append(prefix)
        if self.error is not None:
            raise self.error
        return [KVPair(key=k, value=v) for k, v in self.entries.items()]

    def close(self) -> None:
        self.closed = True


class FakeSignalSource:
    """SignalSource that lets tests deliver signals by hand."""

    def __init__(self) -> None:
        self.handler: Callable[[signal.Signals], None] | None = None
        self.signals: list[signal.Signals] = []
        self.subscribe_count = 0
        self.unsubscribed = False

    def subscribe(
        self,
        handler: Callable[[signal.Signals], None],
        signals: Iterable[signal.Signals | None] = (),
    ) -> None:
        self.handler = handler
        self.signals = [s for s in signals if s is not None]
        self.subscribe_count += 1

    def unsubscribe(self) -> None:
        self.handler = None
        self.unsubscribed = True

    def send(self, sig: signal.Signals) -> None:
        assert self.handler is not None, "nobody subscribed"
        self.handler(sig)


def wait_until(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    """Poll predicate until it is true or timeout seconds have passed."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove Consul and consulsync variables so defaults are predictable."""
    for name in list(os.environ):
        if name.startswith(("CONSUL_", "CONSULSYNC_")):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def reset_logger() -> Iterator[None]:
    """Undo setup_logging() so caplog keeps working in later tests."""
    yield
    logger = logging.getLogger("consulsync")
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def lister() -> FakeLister:
    """Create an empty fake KV store."""
    return FakeLister()


@pytest.fixture
def signal_source() -> FakeSignalSource:
    """Create a fake signal source."""
    return FakeSignalSource()


@pytest.fixture
def waiter() -> Callable[..., bool]:
    """Get the wait_until helper."""
    return wait_until


@pytest.fixture
def destination(tmp_path: Path) -> Path:
    """Get a destination directory path that does not exist yet."""
    return tmp_path / "out"


@pytest.fixture
def make_config(destination: Path) -> Callable[..., Config]:
    """Get a factory for finalized configs writing into destination."""

    def _make(**kwargs: object) -> Config:
        values: dict[str, object] = {
            "from_": "app/config",
            "to": str(destination),
            "interval": 0.05,
        }
        values.update(kwargs)
        config = Config(**values)  # type: ignore[arg-type]
        config.finalize()
        return config

    return _make
