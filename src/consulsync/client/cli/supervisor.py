"""Top-level control loop of the consulsync command.

This module provides:
- Supervisor: Runs Runners, reacts to OS signals and decides the exit code

The supervisor owns exactly one Runner at a time. Runner events and OS
signals are funneled into a single queue and handled one by one in the
calling thread:

    | Event                  | Action                                    |
    |------------------------|-------------------------------------------|
    | Runner error           | Stop runner, exit with RUNNER_ERROR or    |
    |                        | the error's own exit status               |
    | Runner done            | Stop runner, exit with OK                 |
    | Reload signal          | Stop runner, reload config, start new one |
    | Kill signal            | Stop runner, exit with INTERRUPT          |
    | SIGCHLD                | Ignored                                   |
    | Any other signal       | Stop runner, exit with INTERRUPT          |
    | stop()                 | Stop runner, exit with OK                 |

Events from a Runner that has already been replaced are discarded.
"""

from __future__ import annotations

import logging
import queue
import signal
import sys
import threading
from collections.abc import Callable
from typing import TYPE_CHECKING, TextIO

import click

from consulsync.client.sync.runner import Runner
from consulsync.client.sync.types import (
    RunnerEvent,
    RunnerEventType,
    SupervisorState,
    SyncError,
)
from consulsync.core.config import ConfigError
from consulsync.core.signals import CHILD_SIGNAL, default_signal_source
from consulsync.core.types import ExitCode

if TYPE_CHECKING:
    from consulsync.core.config import Config
    from consulsync.core.signals import SignalSource

logger = logging.getLogger(__name__)

RunnerFactory = Callable[..., Runner]

# Queue item asking the loop to shut down.
_STOP = object()


class Supervisor:
    """Signal-driven lifecycle of the sync agent.

    Usage:
        supervisor = Supervisor(config, reload_config=load)
        sys.exit(supervisor.run())
    """

    def __init__(
        self,
        config: Config,
        reload_config: Callable[[], Config] | None = None,
        once: bool = False,
        dry: bool = False,
        err_stream: TextIO | None = None,
        signal_source: SignalSource | None = None,
        runner_factory: RunnerFactory = Runner,
        poll_interval: float = 0.5,
    ) -> None:
        """Initialize the supervisor.

        Args:
            config: Finalized configuration for the first Runner.
            reload_config: Loads a fresh finalized configuration on reload.
                May raise ConfigError. Reuses the current one if omitted.
            once: Passed to every Runner.
            dry: Passed to every Runner.
            err_stream: Where reload and shutdown notices are echoed.
            signal_source: Delivers OS signals. Platform default if omitted.
            runner_factory: Builds Runners; called with the config and the
                once, dry and events keywords.
            poll_interval: How often the loop wakes up while idle.
        """
        self._config = config
        self._reload_config = reload_config
        self._once = once
        self._dry = dry
        self._err_stream = err_stream if err_stream is not None else sys.stderr
        self._signal_source = (
            signal_source if signal_source is not None else default_signal_source()
        )
        self._runner_factory = runner_factory
        self._poll_interval = poll_interval

        self._events: queue.SimpleQueue[object] = queue.SimpleQueue()
        self._runner: Runner | None = None
        self._state = SupervisorState.STARTING
        self._lock = threading.Lock()
        self._stopped = False

    @property
    def state(self) -> SupervisorState:
        """Get current supervisor state."""
        return self._state

    @property
    def runner(self) -> Runner | None:
        """Get the current Runner, if one has been created."""
        return self._runner

    @property
    def config(self) -> Config:
        """Get the configuration of the current generation."""
        return self._config

    def run(self) -> ExitCode:
        """Run until a runner finishes, fails, or a signal ends the process.

        Must be called from the main thread when real OS signals are used.

        Returns:
            The exit code for the process.
        """
        self._state = SupervisorState.STARTING
        self._subscribe()
        try:
            self._start_runner()
            self._state = SupervisorState.WATCHING
            return self._watch()
        finally:
            self._state = SupervisorState.TERMINATING
            self._signal_source.unsubscribe()
            self._stop_runner()

    def stop(self) -> None:
        """Ask run() to shut down and return OK. Safe to call more than once."""
        with self._lock:
            if self._stopped:
                return
            self._stopped = True
            self._events.put(_STOP)

    def _subscribe(self) -> None:
        self._signal_source.subscribe(
            self._on_signal,
            [self._config.kill_signal, self._config.reload_signal],
        )

    def _on_signal(self, sig: signal.Signals) -> None:
        """Queue a received signal. Runs inside the signal handler."""
        self._events.put(sig)

    def _start_runner(self) -> None:
        self._runner = self._runner_factory(
            self._config,
            once=self._once,
            dry=self._dry,
            events=self._events,
        )
        self._runner.start()

    def _stop_runner(self) -> None:
        if self._runner is not None:
            self._runner.stop()

    def _watch(self) -> ExitCode:
        """Handle events until one of them ends the process."""
        while True:
            try:
                item = self._events.get(timeout=self._poll_interval)
            except queue.Empty:
                continue

            if item is _STOP:
                logger.debug("Stop requested")
                self._stop_runner()
                return ExitCode.OK

            if isinstance(item, RunnerEvent):
                code = self._handle_runner_event(item)
            elif isinstance(item, signal.Signals):
                code = self._handle_signal(item)
            else:
                logger.warning(f"Ignoring unknown event {item!r}")
                continue

            if code is not None:
                return code

    def _handle_runner_event(self, event: RunnerEvent) -> ExitCode | None:
        if event.runner is not self._runner:
            logger.debug(f"Ignoring {event.kind.name} event from a previous runner")
            return None

        if event.kind == RunnerEventType.DONE:
            logger.info("Runner finished")
            self._stop_runner()
            return ExitCode.OK

        error = event.error
        code = ExitCode.RUNNER_ERROR
        if isinstance(error, SyncError) and error.exit_status is not None:
            code = error.exit_status
        logger.error(f"Runner error: {error}")
        self._stop_runner()
        return code

    def _handle_signal(self, sig: signal.Signals) -> ExitCode | None:
        logger.debug(f"Receiving signal {sig.name}")

        if sig == self._config.reload_signal:
            return self._reload()

        if sig == self._config.kill_signal:
            click.echo("Cleaning up...", file=self._err_stream)
            self._stop_runner()
            return ExitCode.INTERRUPT

        if CHILD_SIGNAL is not None and sig == CHILD_SIGNAL:
            return None

        logger.info(f"Received {sig.name}, shutting down")
        click.echo("Cleaning up...", file=self._err_stream)
        self._stop_runner()
        return ExitCode.INTERRUPT

    def _reload(self) -> ExitCode | None:
        """Replace the current Runner with one built from fresh config."""
        click.echo("Reloading configuration...", file=self._err_stream)
        self._state = SupervisorState.RELOADING
        self._stop_runner()

        if self._reload_config is not None:
            try:
                self._config = self._reload_config()
            except ConfigError as e:
                logger.error(f"Reloading configuration failed: {e}")
                return ExitCode.CONFIG_ERROR

        # The new configuration may name different kill or reload signals.
        self._subscribe()
        self._start_runner()
        self._state = SupervisorState.WATCHING
        logger.info("Configuration reloaded")
        return None
