"""HTTP client for the Consul KV API.

This module provides:
- ConsulClient: HTTP client for listing keys under a prefix
- KVPair: One key and its raw value
- KVLister: Protocol for anything that can list keys
- Exception hierarchy for remote-store failures
"""

from __future__ import annotations

import base64
import logging
import socket
import ssl
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from consulsync.core.config import ConsulConfig, TransportConfig

logger = logging.getLogger(__name__)

KV_ENDPOINT = "/v1/kv/"
TOKEN_HEADER = "X-Consul-Token"


class KVError(Exception):
    """Base exception for remote-store errors."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ConnectionFailedError(KVError):
    """The store could not be reached (DNS, refused, timeout, TLS)."""


class AuthenticationError(KVError):
    """The store rejected our credentials."""


@dataclass
class KVPair:
    """A key and its value from the store."""

    key: str
    value: bytes

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> KVPair:
        """Create from a Consul API response entry.

        Consul sends values base64 encoded, and null for keys without one.
        """
        raw = data.get("Value")
        return cls(
            key=data["Key"],
            value=base64.b64decode(raw) if raw else b"",
        )


class KVLister(Protocol):
    """Protocol for key-value stores that can list a prefix."""

    def list(self, prefix: str) -> Sequence[KVPair]:
        """List every entry below prefix.

        Raises:
            KVError: If the store cannot be queried.
        """
        ...

    def close(self) -> None:
        """Release any held connections."""
        ...


def build_ssl_context(config: ConsulConfig) -> ssl.SSLContext:
    """Build the TLS context for a Consul connection.

    Raises:
        KVError: If certificates or CA files cannot be loaded.
    """
    tls = config.ssl
    try:
        if tls.verify:
            context = ssl.create_default_context(
                cafile=tls.ca_cert or None,
                capath=tls.ca_path or None,
            )
        else:
            logger.warning("Disabling consul SSL verification")
            context = ssl.create_default_context()
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE

        if tls.cert:
            # A certificate without a key must carry its key itself.
            context.load_cert_chain(tls.cert, tls.key or None)
    except (OSError, ssl.SSLError) as e:
        raise KVError(f"consul: configuring TLS failed: {e}") from e
    return context


def _socket_options(transport: TransportConfig) -> list[tuple[int, int, int]]:
    keep_alive = transport.dial_keep_alive or 0
    if keep_alive <= 0:
        return []

    seconds = max(1, int(keep_alive))
    options = [(socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)]
    if hasattr(socket, "TCP_KEEPIDLE"):
        options.append((socket.IPPROTO_TCP, socket.TCP_KEEPIDLE, seconds))
    if hasattr(socket, "TCP_KEEPINTVL"):
        options.append((socket.IPPROTO_TCP, socket.TCP_KEEPINTVL, seconds))
    return options


def base_url(config: ConsulConfig) -> str:
    """Get the base URL for a Consul address.

    An explicit scheme in the address wins over the SSL setting.
    """
    address = (config.address or "").rstrip("/")
    if address.startswith(("http://", "https://")):
        return address
    scheme = "https" if config.ssl.enabled else "http"
    return f"{scheme}://{address}"


class ConsulClient:
    """HTTP client for the Consul KV API.

    Expects a finalized ConsulConfig.

    Usage:
        with ConsulClient(config.consul) as client:
            for pair in client.list("service/app/config"):
                print(pair.key, len(pair.value))
    """

    def __init__(self, config: ConsulConfig) -> None:
        """Initialize the client.

        Args:
            config: Finalized Consul connection settings.

        Raises:
            KVError: If the TLS configuration is invalid.
        """
        self._config = config
        self._base_url = base_url(config)

        transport_config = config.transport
        connect_timeout = max(
            transport_config.dial_timeout or 0,
            transport_config.tls_handshake_timeout or 0,
        )
        timeout = httpx.Timeout(transport_config.dial_timeout, connect=connect_timeout or None)

        # Only one host is ever contacted, so the tighter idle limit applies.
        idle = min(
            transport_config.max_idle_conns_per_host or 0,
            transport_config.max_idle_conns or 0,
        )
        limits = httpx.Limits(
            max_keepalive_connections=0 if transport_config.disable_keep_alives else idle,
            keepalive_expiry=transport_config.idle_conn_timeout,
        )

        verify: ssl.SSLContext | bool = True
        if self._base_url.startswith("https://"):
            verify = build_ssl_context(config)

        headers = {}
        if config.token:
            headers[TOKEN_HEADER] = config.token

        auth = None
        if config.auth.enabled:
            auth = httpx.BasicAuth(config.auth.username or "", config.auth.password or "")

        self._extensions: dict[str, Any] = {}
        if config.ssl.server_name:
            self._extensions["sni_hostname"] = config.ssl.server_name

        self._client = httpx.Client(
            base_url=self._base_url,
            timeout=timeout,
            headers=headers,
            auth=auth,
            transport=httpx.HTTPTransport(
                verify=verify,
                limits=limits,
                socket_options=_socket_options(transport_config),
            ),
        )

    @property
    def address(self) -> str:
        """Get the base URL this client talks to."""
        return self._base_url

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self) -> ConsulClient:
        """Context manager entry."""
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.close()

    def _handle_response(self, response: httpx.Response) -> httpx.Response:
        """Handle API response and raise appropriate exceptions."""
        if response.status_code in (401, 403):
            raise AuthenticationError(
                f"consul: permission denied ({response.status_code})",
                response.status_code,
            )
        if response.status_code >= 400:
            detail = response.text.strip() or response.reason_phrase
            raise KVError(f"consul: {detail}", response.status_code)
        return response

    def list(self, prefix: str) -> Sequence[KVPair]:
        """List every key below a prefix.

        Args:
            prefix: Key prefix, with or without a leading slash.

        Returns:
            Entries in the order Consul returns them. An unknown prefix
            gives an empty list.

        Raises:
            ConnectionFailedError: If Consul cannot be reached.
            AuthenticationError: If the token or credentials are rejected.
            KVError: For any other error response.
        """
        path = KV_ENDPOINT + prefix.lstrip("/")
        try:
            response = self._client.get(
                path,
                params={"recurse": "true"},
                extensions=self._extensions,
            )
        except httpx.RequestError as e:
            raise ConnectionFailedError(f"consul: list {prefix!r}: {e}") from e

        if response.status_code == 404:
            return []

        self._handle_response(response)
        return [KVPair.from_dict(entry) for entry in response.json()]
