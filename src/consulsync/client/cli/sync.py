"""The consulsync command.

Commands:
- consulsync: Mirror a Consul KV prefix into a local directory
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import click

from consulsync import __version__
from consulsync.client.cli.options import AUTH, DURATION, SIGNAL, build_overrides
from consulsync.client.cli.supervisor import Supervisor
from consulsync.core.config import (
    DEFAULT_LOG_LEVEL,
    DEFAULT_SYSLOG_FACILITY,
    Config,
    ConfigError,
)
from consulsync.core.loader import load_configs
from consulsync.core.log import setup_logging
from consulsync.core.types import ExitCode

logger = logging.getLogger(__name__)

HUMAN_VERSION = f"consulsync v{__version__}"


@click.command(name="consulsync")
@click.option(
    "--config",
    "config_paths",
    multiple=True,
    help="Config file or directory to load. May be given more than once.",
)
@click.option("--from", "from_", default=None, help="Consul KV prefix to mirror.")
@click.option("--to", default=None, help="Directory to write one file per key into.")
@click.option("--interval", type=DURATION, default=None, help="Time between sync passes.")
@click.option("--pid-file", default=None, help="Path to write the process id to.")
@click.option("--kill-signal", type=SIGNAL, default=None, help="Signal for graceful shutdown.")
@click.option("--reload-signal", type=SIGNAL, default=None, help="Signal for config reload.")
@click.option("--once", is_flag=True, help="Run a single sync pass and exit.")
@click.option("--dry", is_flag=True, help="Log what would be written and exit.")
@click.option("--log-level", default=None, help="TRACE, DEBUG, INFO, WARN or ERR.")
@click.option("--syslog/--no-syslog", default=None, help="Also log to syslog.")
@click.option("--syslog-facility", default=None, help="Syslog facility, e.g. LOCAL0.")
@click.option("--consul-addr", default=None, help="Consul address as host:port.")
@click.option("--consul-auth", type=AUTH, default=None, help="Basic auth as user[:password].")
@click.option("--consul-token", default=None, help="Consul ACL token.")
@click.option("--consul-retry/--no-consul-retry", default=None, help="Retry failed calls.")
@click.option(
    "--consul-retry-attempts",
    type=click.IntRange(min=0),
    default=None,
    help="Maximum retries, 0 for unlimited.",
)
@click.option("--consul-retry-backoff", type=DURATION, default=None, help="First retry wait.")
@click.option(
    "--consul-retry-max-backoff",
    type=DURATION,
    default=None,
    help="Cap on the retry wait, 0 for no cap.",
)
@click.option("--consul-ssl/--no-consul-ssl", default=None, help="Talk to Consul over TLS.")
@click.option(
    "--consul-ssl-verify/--no-consul-ssl-verify",
    default=None,
    help="Verify the Consul server certificate.",
)
@click.option("--consul-ssl-cert", default=None, help="Client certificate file.")
@click.option("--consul-ssl-key", default=None, help="Client key file.")
@click.option("--consul-ssl-ca-cert", default=None, help="CA certificate file.")
@click.option("--consul-ssl-ca-path", default=None, help="Directory of CA certificates.")
@click.option("--consul-ssl-server-name", default=None, help="Server name for SNI.")
@click.option("--consul-transport-dial-keep-alive", type=DURATION, default=None)
@click.option("--consul-transport-dial-timeout", type=DURATION, default=None)
@click.option(
    "--consul-transport-disable-keep-alives/--consul-transport-enable-keep-alives",
    default=None,
)
@click.option(
    "--consul-transport-max-idle-conns-per-host",
    type=click.IntRange(min=0),
    default=None,
)
@click.option("--consul-transport-tls-handshake-timeout", type=DURATION, default=None)
@click.option("-v", "--version", is_flag=True, help="Print the version and exit.")
@click.pass_context
def sync(
    ctx: click.Context,
    config_paths: tuple[str, ...],
    once: bool,
    dry: bool,
    version: bool,
    **options: Any,
) -> None:
    """Mirror a Consul KV prefix into a local directory.

    Every key below --from is written to a file named after the key's last
    segment inside --to, whenever its content changed. Sending the reload
    signal (SIGHUP by default) reloads the configuration files.
    """
    try:
        overrides = build_overrides(options)
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        ctx.exit(ExitCode.PARSE_FLAGS_ERROR)

    paths = list(config_paths)

    def load() -> Config:
        config = load_configs(paths, overrides)
        setup_logging(
            config.log_level or DEFAULT_LOG_LEVEL,
            stream=sys.stderr,
            syslog=bool(config.syslog.enabled),
            syslog_facility=config.syslog.facility or DEFAULT_SYSLOG_FACILITY,
        )
        return config

    try:
        config = load()
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        ctx.exit(ExitCode.CONFIG_ERROR)

    logger.info(HUMAN_VERSION)

    # Like most Unix tools, the version goes to stderr.
    if version:
        logger.debug("Version flag was given, exiting now")
        click.echo(HUMAN_VERSION, err=True)
        ctx.exit(ExitCode.OK)

    supervisor = Supervisor(
        config,
        reload_config=load,
        once=once,
        dry=dry,
        err_stream=sys.stderr,
    )
    ctx.exit(supervisor.run())
