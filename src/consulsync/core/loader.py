"""Configuration file loading for consulsync.

This module provides:
- parse: Decode TOML or JSON text into a Config
- from_file / from_path: Load a file, or every file below a directory
- load_configs: Layer defaults, files and overrides into a final Config

Files use the same layout as the Config dataclasses, with snake_case keys:

    from = "service/app/config"
    to = "/etc/app"
    interval = "5s"

    [consul]
    address = "consul.internal:8500"

    [consul.retry]
    attempts = 5
    backoff = "500ms"
"""

from __future__ import annotations

import dataclasses
import json
import logging
import os
import signal
import tomllib
import typing
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from consulsync.core.config import (
    Config,
    ConfigError,
    ConsulConfig,
    parse_duration,
)
from consulsync.core.signals import parse_signal

logger = logging.getLogger(__name__)

JSON_SUFFIXES = {".json"}


def parse(text: str, fmt: str = "toml") -> Config:
    """Parse configuration text.

    Args:
        text: File contents.
        fmt: "toml" or "json".

    Returns:
        A Config with only the fields present in the text set.

    Raises:
        ConfigError: If the text cannot be decoded or has unknown keys.
    """
    try:
        if fmt == "json":
            data = json.loads(text)
        else:
            data = tomllib.loads(text)
    except (json.JSONDecodeError, tomllib.TOMLDecodeError) as e:
        raise ConfigError(f"error decoding config: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError("error decoding config: top level must be a table")
    return _decode(Config, data, "")


def from_file(path: str | Path) -> Config:
    """Load a single configuration file.

    Raises:
        ConfigError: If the file cannot be read or parsed.
    """
    path = Path(path)
    fmt = "json" if path.suffix.lower() in JSON_SUFFIXES else "toml"
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"from file: {path}: {e}") from e

    try:
        return parse(text, fmt)
    except ConfigError as e:
        raise ConfigError(f"from file: {path}: {e}") from e


def from_path(path: str | Path) -> Config:
    """Load a configuration file, or merge every file below a directory.

    Directories are walked in sorted order and files are merged left to
    right, so later files win.

    Raises:
        ConfigError: If the path is missing or any file is invalid.
    """
    path = Path(path)
    if not path.exists():
        raise ConfigError(f"missing file/folder: {path}")

    if path.is_dir():
        result = Config()
        for root, dirs, files in os.walk(path):
            dirs.sort()
            for name in sorted(files):
                result = result.merge(from_file(Path(root) / name))
        return result

    if path.is_file():
        return from_file(path)

    raise ConfigError(f"unknown filetype: {path}")


def load_configs(paths: Iterable[str | Path], overrides: Config | None) -> Config:
    """Build the final configuration.

    Defaults come first, then every path in order, then overrides, which
    always win. The result is finalized and validated. overrides is not
    modified.

    Raises:
        ConfigError: If any file is invalid or the result does not validate.
    """
    result = Config.default()
    for path in paths:
        logger.debug("Loading configuration from %s", path)
        result = result.merge(from_path(path))

    result = result.merge(overrides)
    result.finalize()
    result.validate()
    return result


def _field_name(key: str) -> str:
    name = key.replace("-", "_")
    if name == "from":
        return "from_"
    return name


def _decode(cls: type[Any], data: dict[str, Any], prefix: str) -> Any:
    hints = typing.get_type_hints(cls)
    names = {f.name for f in dataclasses.fields(cls)}
    values: dict[str, Any] = {}

    for key, raw in data.items():
        name = _field_name(key)
        qualified = f"{prefix}{key}"
        if name not in names:
            raise ConfigError(f"unknown key {qualified!r}")
        values[name] = _coerce(raw, hints[name], qualified)

    return cls(**values)


def _coerce(value: Any, hint: Any, key: str) -> Any:
    args = [a for a in typing.get_args(hint) if a is not type(None)]
    target = args[0] if args else hint

    if dataclasses.is_dataclass(target):
        if target is ConsulConfig and isinstance(value, str):
            # Shorthand: consul = "host:port"
            return ConsulConfig(address=value)
        if not isinstance(value, dict):
            raise ConfigError(f"{key}: expected a table")
        return _decode(target, value, f"{key}.")

    if target is bool:
        if isinstance(value, bool):
            return value
        raise ConfigError(f"{key}: expected a boolean, got {value!r}")

    if target is int:
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        raise ConfigError(f"{key}: expected an integer, got {value!r}")

    if target is float:
        # Every float field is a duration.
        if not isinstance(value, (str, int, float)):
            raise ConfigError(f"{key}: expected a duration, got {value!r}")
        try:
            return parse_duration(value)
        except ConfigError as e:
            raise ConfigError(f"{key}: {e}") from e

    if target is signal.Signals:
        if not isinstance(value, str):
            raise ConfigError(f"{key}: expected a signal name, got {value!r}")
        try:
            return parse_signal(value)
        except ValueError as e:
            raise ConfigError(f"{key}: {e}") from e

    if isinstance(value, str):
        return value
    raise ConfigError(f"{key}: expected a string, got {value!r}")
