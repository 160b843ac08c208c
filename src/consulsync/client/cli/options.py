"""Option types and override building for the consulsync CLI.

Every option defaults to None so that only flags actually given on the
command line override values from configuration files.
"""

from __future__ import annotations

import os
import signal
from typing import Any

import click

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
from consulsync.core.loader import parse
from consulsync.core.signals import parse_signal

LOCAL_CONFIG_ENV = "CONSULSYNC_LOCAL_CONFIG"


class DurationType(click.ParamType):
    """Duration such as "250ms", "1m30s" or a number of seconds."""

    name = "duration"

    def convert(
        self, value: Any, param: click.Parameter | None, ctx: click.Context | None
    ) -> float:
        if isinstance(value, float):
            return value
        try:
            return parse_duration(value)
        except ConfigError as e:
            self.fail(str(e), param, ctx)


class SignalType(click.ParamType):
    """Signal name such as "SIGHUP" or "hup"."""

    name = "signal"

    def convert(
        self, value: Any, param: click.Parameter | None, ctx: click.Context | None
    ) -> signal.Signals:
        if isinstance(value, signal.Signals):
            return value
        try:
            return parse_signal(value)
        except ValueError as e:
            self.fail(str(e), param, ctx)


class AuthType(click.ParamType):
    """HTTP basic auth as "username[:password]"."""

    name = "auth"

    def convert(
        self, value: Any, param: click.Parameter | None, ctx: click.Context | None
    ) -> AuthConfig:
        if isinstance(value, AuthConfig):
            return value
        try:
            return parse_auth(value)
        except ConfigError as e:
            self.fail(str(e), param, ctx)


DURATION = DurationType()
SIGNAL = SignalType()
AUTH = AuthType()


def build_overrides(options: dict[str, Any]) -> Config:
    """Build the configuration given on the command line.

    Text in the CONSULSYNC_LOCAL_CONFIG environment variable is applied
    first, flags are applied on top of it.

    Args:
        options: Parameters of the consulsync command, by parameter name.

    Returns:
        A Config where everything not given is None.

    Raises:
        ConfigError: If the environment configuration cannot be parsed.
    """
    overrides = Config()

    local = os.environ.get(LOCAL_CONFIG_ENV, "")
    if local:
        try:
            overrides = overrides.merge(parse(local))
        except ConfigError as e:
            raise ConfigError(f"{LOCAL_CONFIG_ENV}: {e}") from e

    flags = Config(
        from_=options.get("from_"),
        to=options.get("to"),
        interval=options.get("interval"),
        pid_file=options.get("pid_file"),
        kill_signal=options.get("kill_signal"),
        reload_signal=options.get("reload_signal"),
        log_level=options.get("log_level"),
        consul=ConsulConfig(
            address=options.get("consul_addr"),
            token=options.get("consul_token"),
            auth=options.get("consul_auth") or AuthConfig(),
            retry=RetryConfig(
                enabled=options.get("consul_retry"),
                attempts=options.get("consul_retry_attempts"),
                backoff=options.get("consul_retry_backoff"),
                max_backoff=options.get("consul_retry_max_backoff"),
            ),
            ssl=SSLConfig(
                enabled=options.get("consul_ssl"),
                verify=options.get("consul_ssl_verify"),
                cert=options.get("consul_ssl_cert"),
                key=options.get("consul_ssl_key"),
                ca_cert=options.get("consul_ssl_ca_cert"),
                ca_path=options.get("consul_ssl_ca_path"),
                server_name=options.get("consul_ssl_server_name"),
            ),
            transport=TransportConfig(
                dial_keep_alive=options.get("consul_transport_dial_keep_alive"),
                dial_timeout=options.get("consul_transport_dial_timeout"),
                disable_keep_alives=options.get("consul_transport_disable_keep_alives"),
                max_idle_conns_per_host=options.get("consul_transport_max_idle_conns_per_host"),
                tls_handshake_timeout=options.get("consul_transport_tls_handshake_timeout"),
            ),
        ),
        syslog=SyslogConfig(
            enabled=options.get("syslog"),
            facility=options.get("syslog_facility"),
        ),
    )
    return overrides.merge(flags)
