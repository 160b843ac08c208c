"""Configuration classes for consulsync.

Every field starts out as None, meaning "not set". Configurations coming
from defaults, files, the environment and command-line flags are layered
with merge(), where the right-most value that is set wins, and then
finalize() fills whatever is still unset with its default. After
finalize() no field is None except the reload signal on platforms that
do not have one.

Durations are floats in seconds.
"""

from __future__ import annotations

import copy
import dataclasses
import os
import re
import signal
from dataclasses import dataclass, field
from typing import Any, TypeVar

from consulsync.core.signals import DEFAULT_KILL_SIGNAL, DEFAULT_RELOAD_SIGNAL

DEFAULT_FROM = "/"
DEFAULT_TO = "./"
DEFAULT_INTERVAL = 1.0
DEFAULT_LOG_LEVEL = "WARN"

DEFAULT_CONSUL_ADDRESS = "127.0.0.1:8500"

DEFAULT_RETRY_ATTEMPTS = 12
DEFAULT_RETRY_BACKOFF = 0.25
DEFAULT_RETRY_MAX_BACKOFF = 60.0

DEFAULT_SYSLOG_FACILITY = "LOCAL0"

DEFAULT_DIAL_KEEP_ALIVE = 30.0
DEFAULT_DIAL_TIMEOUT = 30.0
DEFAULT_IDLE_CONN_TIMEOUT = 90.0
DEFAULT_MAX_IDLE_CONNS = 100
DEFAULT_MAX_IDLE_CONNS_PER_HOST = (os.cpu_count() or 1) + 1
DEFAULT_TLS_HANDSHAKE_TIMEOUT = 10.0

_TRUE_STRINGS = {"1", "t", "true", "y", "yes", "on"}
_FALSE_STRINGS = {"0", "f", "false", "n", "no", "off"}

_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")
_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}

_C = TypeVar("_C", bound="_ConfigBlock")


class ConfigError(ValueError):
    """Configuration is malformed, incomplete or inconsistent."""


def parse_duration(value: str | float | int) -> float:
    """Parse a duration into seconds.

    Accepts numbers (taken as seconds) and Go-style duration strings
    such as "250ms", "2s" or "1m30s".

    Args:
        value: The duration to parse.

    Returns:
        Duration in seconds.

    Raises:
        ConfigError: If the value is not a valid duration.
    """
    if isinstance(value, bool):
        raise ConfigError(f"invalid duration {value!r}")
    if isinstance(value, (int, float)):
        return float(value)

    text = str(value).strip()
    try:
        return float(text)
    except ValueError:
        pass

    total = 0.0
    pos = 0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    if pos == 0 or pos != len(text):
        raise ConfigError(f"invalid duration {value!r}")
    return total


def parse_bool(value: str) -> bool:
    """Parse a boolean from its common string spellings.

    Raises:
        ConfigError: If the string is not a recognised boolean.
    """
    lowered = value.strip().lower()
    if lowered in _TRUE_STRINGS:
        return True
    if lowered in _FALSE_STRINGS:
        return False
    raise ConfigError(f"invalid boolean {value!r}")


def _string_from_env(names: list[str], default: str) -> str:
    for name in names:
        value = os.environ.get(name, "")
        if value:
            return value.strip()
    return default


def _bool_from_env(names: list[str], default: bool | None) -> bool | None:
    for name in names:
        value = os.environ.get(name, "")
        if value:
            try:
                return parse_bool(value)
            except ConfigError:
                continue
    return default


class _ConfigBlock:
    """Copy and merge behaviour shared by all configuration dataclasses."""

    def copy(self: _C) -> _C:
        """Return a deep copy."""
        return copy.deepcopy(self)

    def merge(self: _C, other: _C | None) -> _C:
        """Return a copy of self overlaid with every field set in other.

        Nested blocks are merged field by field.
        """
        result = self.copy()
        if other is None:
            return result

        for f in dataclasses.fields(self):  # type: ignore[arg-type]
            value = getattr(other, f.name)
            if value is None:
                continue
            current = getattr(result, f.name)
            if isinstance(value, _ConfigBlock) and current is not None:
                setattr(result, f.name, current.merge(value))
            else:
                setattr(result, f.name, copy.deepcopy(value))
        return result


@dataclass
class AuthConfig(_ConfigBlock):
    """HTTP basic authentication for Consul."""

    enabled: bool | None = None
    username: str | None = None
    password: str | None = None

    def finalize(self) -> None:
        if self.username is None and self.password is None:
            env = os.environ.get("CONSUL_HTTP_AUTH", "")
            if env:
                parsed = parse_auth(env)
                self.username = parsed.username
                self.password = parsed.password

        if self.username is None:
            self.username = ""
        if self.password is None:
            self.password = ""
        if self.enabled is None:
            self.enabled = self.username != ""


def parse_auth(value: str) -> AuthConfig:
    """Parse "username[:password]" into an AuthConfig.

    Raises:
        ConfigError: If the string is empty.
    """
    if not value:
        raise ConfigError("auth: cannot be empty")
    if ":" in value:
        username, password = value.split(":", 1)
        return AuthConfig(username=username, password=password)
    return AuthConfig(username=value)


@dataclass
class RetryConfig(_ConfigBlock):
    """Retry policy for talking to Consul.

    Attributes:
        enabled: Whether failed calls are retried at all.
        attempts: Maximum number of retries, 0 for unlimited.
        backoff: Base wait in seconds, doubled on every retry.
        max_backoff: Cap on the wait in seconds, 0 for no cap.
    """

    enabled: bool | None = None
    attempts: int | None = None
    backoff: float | None = None
    max_backoff: float | None = None

    def finalize(self) -> None:
        if self.enabled is None:
            self.enabled = True
        if self.attempts is None:
            self.attempts = DEFAULT_RETRY_ATTEMPTS
        if self.backoff is None:
            self.backoff = DEFAULT_RETRY_BACKOFF
        if self.max_backoff is None:
            self.max_backoff = DEFAULT_RETRY_MAX_BACKOFF


@dataclass
class SSLConfig(_ConfigBlock):
    """TLS settings for the Consul connection."""

    enabled: bool | None = None
    verify: bool | None = None
    cert: str | None = None
    key: str | None = None
    ca_cert: str | None = None
    ca_path: str | None = None
    server_name: str | None = None

    def finalize(self) -> None:
        if self.cert is None:
            self.cert = _string_from_env(["CONSUL_CLIENT_CERT"], "")
        if self.key is None:
            self.key = _string_from_env(["CONSUL_CLIENT_KEY"], "")
        if self.ca_cert is None:
            self.ca_cert = _string_from_env(["CONSUL_CACERT"], "")
        if self.ca_path is None:
            self.ca_path = _string_from_env(["CONSUL_CAPATH"], "")
        if self.server_name is None:
            self.server_name = _string_from_env(["CONSUL_TLS_SERVER_NAME"], "")

        if self.enabled is None:
            self.enabled = _bool_from_env(["CONSUL_HTTP_SSL"], None)
        if self.enabled is None:
            # Any TLS material given implies TLS is wanted.
            self.enabled = any(
                (self.cert, self.key, self.ca_cert, self.ca_path, self.server_name)
            )
        if self.verify is None:
            self.verify = _bool_from_env(["CONSUL_HTTP_SSL_VERIFY"], True)


@dataclass
class TransportConfig(_ConfigBlock):
    """Connection tuning for the HTTP transport."""

    dial_keep_alive: float | None = None
    dial_timeout: float | None = None
    disable_keep_alives: bool | None = None
    idle_conn_timeout: float | None = None
    max_idle_conns: int | None = None
    max_idle_conns_per_host: int | None = None
    tls_handshake_timeout: float | None = None

    def finalize(self) -> None:
        if self.dial_keep_alive is None:
            self.dial_keep_alive = DEFAULT_DIAL_KEEP_ALIVE
        if self.dial_timeout is None:
            self.dial_timeout = DEFAULT_DIAL_TIMEOUT
        if self.disable_keep_alives is None:
            self.disable_keep_alives = False
        if self.idle_conn_timeout is None:
            self.idle_conn_timeout = DEFAULT_IDLE_CONN_TIMEOUT
        if self.max_idle_conns is None:
            self.max_idle_conns = DEFAULT_MAX_IDLE_CONNS
        if self.max_idle_conns_per_host is None:
            self.max_idle_conns_per_host = DEFAULT_MAX_IDLE_CONNS_PER_HOST
        if self.tls_handshake_timeout is None:
            self.tls_handshake_timeout = DEFAULT_TLS_HANDSHAKE_TIMEOUT


@dataclass
class ConsulConfig(_ConfigBlock):
    """Everything needed to build a Consul KV client."""

    address: str | None = None
    token: str | None = None
    auth: AuthConfig = field(default_factory=AuthConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    ssl: SSLConfig = field(default_factory=SSLConfig)
    transport: TransportConfig = field(default_factory=TransportConfig)

    def finalize(self) -> None:
        if self.address is None:
            self.address = _string_from_env(["CONSUL_HTTP_ADDR"], DEFAULT_CONSUL_ADDRESS)
        if self.token is None:
            self.token = _string_from_env(["CONSUL_TOKEN", "CONSUL_HTTP_TOKEN"], "")
        self.auth.finalize()
        self.retry.finalize()
        self.ssl.finalize()
        self.transport.finalize()


@dataclass
class SyslogConfig(_ConfigBlock):
    """Whether to also log to syslog, and on which facility."""

    enabled: bool | None = None
    facility: str | None = None

    def finalize(self) -> None:
        if self.enabled is None:
            self.enabled = False
        if self.facility is None:
            self.facility = DEFAULT_SYSLOG_FACILITY


@dataclass
class Config(_ConfigBlock):
    """Top-level consulsync configuration.

    Attributes:
        from_: Consul KV prefix to mirror ("from" in files and flags).
        to: Local directory receiving one file per key.
        interval: Seconds between two sync passes.
        pid_file: Where to write the process id, empty to disable.
        kill_signal: Signal requesting a graceful shutdown.
        reload_signal: Signal requesting a configuration reload.
        log_level: Minimum level to log.
        consul: Connection settings.
        syslog: Syslog output settings.
    """

    from_: str | None = None
    to: str | None = None
    interval: float | None = None
    pid_file: str | None = None
    kill_signal: signal.Signals | None = None
    reload_signal: signal.Signals | None = None
    log_level: str | None = None
    consul: ConsulConfig = field(default_factory=ConsulConfig)
    syslog: SyslogConfig = field(default_factory=SyslogConfig)

    @classmethod
    def default(cls) -> Config:
        """Get the baseline configuration that files and flags layer onto."""
        return cls(from_=DEFAULT_FROM, to=DEFAULT_TO, interval=DEFAULT_INTERVAL)

    def finalize(self) -> None:
        """Fill every unset field with its default."""
        if self.from_ is None:
            self.from_ = DEFAULT_FROM
        if self.to is None:
            self.to = DEFAULT_TO
        if self.interval is None:
            self.interval = DEFAULT_INTERVAL
        if self.pid_file is None:
            self.pid_file = ""
        if self.kill_signal is None:
            self.kill_signal = DEFAULT_KILL_SIGNAL
        if self.reload_signal is None:
            self.reload_signal = DEFAULT_RELOAD_SIGNAL
        if self.log_level is None:
            self.log_level = _string_from_env(["CONSULSYNC_LOG"], DEFAULT_LOG_LEVEL)
        self.consul.finalize()
        self.syslog.finalize()

    def validate(self) -> None:
        """Check a finalized configuration for values that cannot work.

        Raises:
            ConfigError: On the first problem found.
        """
        if not self.from_:
            raise ConfigError("from: key prefix cannot be empty")
        if not self.to:
            raise ConfigError("to: destination directory cannot be empty")
        if self.interval is None or self.interval <= 0:
            raise ConfigError(f"interval: must be positive, got {self.interval}")

        retry = self.consul.retry
        if retry.attempts is not None and retry.attempts < 0:
            raise ConfigError(f"consul.retry.attempts: must be >= 0, got {retry.attempts}")
        if retry.backoff is not None and retry.backoff <= 0:
            raise ConfigError(f"consul.retry.backoff: must be positive, got {retry.backoff}")
        if retry.max_backoff is not None and retry.max_backoff < 0:
            raise ConfigError(
                f"consul.retry.max_backoff: must be >= 0, got {retry.max_backoff}"
            )

    def describe(self) -> dict[str, Any]:
        """Get a printable view of the configuration with secrets masked."""
        data = dataclasses.asdict(self)
        data["from"] = data.pop("from_")
        for key in ("kill_signal", "reload_signal"):
            sig = data[key]
            data[key] = sig.name if sig is not None else None
        if data["consul"]["token"]:
            data["consul"]["token"] = "<hidden>"
        if data["consul"]["auth"]["password"]:
            data["consul"]["auth"]["password"] = "<hidden>"
        return data
