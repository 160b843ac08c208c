"""OS signal lookup and subscription.

This module provides:
- SIGNAL_LOOKUP / parse_signal: Name based lookup of the platform's signals
- SignalSource: Capability interface for receiving signals
- PosixSignalSource / WindowsSignalSource: Platform specific variants

Signal sets differ between platforms (there is no SIGHUP or SIGCHLD on
Windows), so nothing outside this module refers to a signal that might not
exist. Platform specific values are looked up by name and may be None.
"""

from __future__ import annotations

import logging
import signal
import sys
import threading
from collections.abc import Callable, Iterable
from typing import Any, Protocol

logger = logging.getLogger(__name__)

SIGNAL_LOOKUP: dict[str, signal.Signals] = {s.name: s for s in signal.Signals}

VALID_SIGNALS: list[str] = sorted(SIGNAL_LOOKUP)

DEFAULT_RELOAD_SIGNAL: signal.Signals | None = SIGNAL_LOOKUP.get("SIGHUP")
DEFAULT_KILL_SIGNAL: signal.Signals = signal.SIGINT

# Delivered when a child process changes state; never a shutdown request.
CHILD_SIGNAL: signal.Signals | None = SIGNAL_LOOKUP.get("SIGCHLD")

SignalHandler = Callable[[signal.Signals], None]


def parse_signal(name: str) -> signal.Signals:
    """Look up a signal by name.

    Accepts "SIGHUP", "HUP" and any casing of either.

    Args:
        name: Signal name.

    Returns:
        The matching signal.

    Raises:
        ValueError: If the platform has no signal with that name.
    """
    key = name.strip().upper()
    if not key.startswith("SIG"):
        key = "SIG" + key
    try:
        return SIGNAL_LOOKUP[key]
    except KeyError:
        raise ValueError(
            f"invalid signal {name!r} - valid signals are {VALID_SIGNALS}"
        ) from None


def _lookup_all(names: Iterable[str]) -> list[signal.Signals]:
    return [SIGNAL_LOOKUP[n] for n in names if n in SIGNAL_LOOKUP]


class SignalSource(Protocol):
    """Protocol for things that deliver OS signals to a handler."""

    def subscribe(
        self,
        handler: SignalHandler,
        signals: Iterable[signal.Signals | None] = (),
    ) -> None:
        """Start delivering signals to handler.

        Args:
            handler: Called with each received signal.
            signals: Signals to watch in addition to the platform defaults.
                None entries are ignored.
        """
        ...

    def unsubscribe(self) -> None:
        """Stop delivering signals and restore previous handlers."""
        ...


class PosixSignalSource:
    """Signal source backed by Python signal handlers on POSIX systems.

    Handlers can only be installed from the main thread. The handler runs
    in the main thread between bytecodes, so it must only do reentrant
    work such as putting onto a queue.SimpleQueue.

    Only DEFAULT_SIGNALS and the signals passed to subscribe() are watched.
    Every other signal keeps its default action.

    Subscribing again while subscribed swaps handlers in place: a watched
    signal never falls back to its previous handler in between.
    """

    DEFAULT_SIGNALS: tuple[str, ...] = (
        "SIGHUP",
        "SIGINT",
        "SIGTERM",
        "SIGQUIT",
        "SIGUSR1",
        "SIGUSR2",
    )

    def __init__(self) -> None:
        self._previous: dict[signal.Signals, Any] = {}
        self._lock = threading.Lock()

    def watched(self, extra: Iterable[signal.Signals | None] = ()) -> list[signal.Signals]:
        """Get the signals that subscribe() will install handlers for."""
        result = _lookup_all(self.DEFAULT_SIGNALS)
        for sig in extra:
            if sig is not None and sig not in result:
                result.append(sig)
        return result

    def subscribe(
        self,
        handler: SignalHandler,
        signals: Iterable[signal.Signals | None] = (),
    ) -> None:
        def _on_signal(signum: int, frame: object) -> None:
            handler(signal.Signals(signum))

        with self._lock:
            watched = self.watched(signals)
            for sig in watched:
                try:
                    previous = signal.signal(sig, _on_signal)
                except (OSError, ValueError) as e:
                    logger.debug("Cannot watch %s: %s", sig.name, e)
                    continue
                # Keep the handler from before the first subscription.
                self._previous.setdefault(sig, previous)

            self._restore([sig for sig in self._previous if sig not in watched])

    def unsubscribe(self) -> None:
        with self._lock:
            self._restore(list(self._previous))

    def _restore(self, sigs: list[signal.Signals]) -> None:
        for sig in sigs:
            previous = self._previous.pop(sig)
            try:
                signal.signal(sig, previous)
            except (OSError, ValueError, TypeError) as e:
                logger.debug("Cannot restore handler for %s: %s", sig.name, e)


class WindowsSignalSource(PosixSignalSource):
    """Signal source for Windows, which only knows a handful of signals."""

    DEFAULT_SIGNALS = ("SIGINT", "SIGTERM", "SIGBREAK")


def default_signal_source() -> SignalSource:
    """Get the signal source for the current platform."""
    if sys.platform == "win32":
        return WindowsSignalSource()
    return PosixSignalSource()
