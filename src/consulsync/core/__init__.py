"""Core module - Configuration, signals, logging and shared types."""

from consulsync.core.config import (
    AuthConfig,
    Config,
    ConfigError,
    ConsulConfig,
    RetryConfig,
    SSLConfig,
    SyslogConfig,
    TransportConfig,
    parse_auth,
    parse_duration,
)
from consulsync.core.hashing import compute_file_hash, compute_hash
from consulsync.core.loader import from_file, from_path, load_configs, parse
from consulsync.core.log import setup_logging
from consulsync.core.signals import (
    SignalSource,
    default_signal_source,
    parse_signal,
)
from consulsync.core.types import ExitCode

__all__ = [
    # Config
    "AuthConfig",
    "Config",
    "ConfigError",
    "ConsulConfig",
    "RetryConfig",
    "SSLConfig",
    "SyslogConfig",
    "TransportConfig",
    "parse_auth",
    "parse_duration",
    # Loading
    "from_file",
    "from_path",
    "load_configs",
    "parse",
    # Hashing
    "compute_file_hash",
    "compute_hash",
    # Logging
    "setup_logging",
    # Signals
    "SignalSource",
    "default_signal_source",
    "parse_signal",
    # Types
    "ExitCode",
]
