"""Construction of the KV client used by a Runner."""

from __future__ import annotations

import logging
import threading

from consulsync.client.api import ConsulClient, KVLister
from consulsync.client.sync.retry import RetryingLister, RetryPolicy
from consulsync.core.config import ConsulConfig

logger = logging.getLogger(__name__)


def create_kv_client(
    config: ConsulConfig,
    cancel: threading.Event | None = None,
) -> KVLister:
    """Build a KV client from finalized connection settings.

    When retries are enabled the client is wrapped so that transient
    listing failures are retried with exponential backoff.

    Args:
        config: Finalized Consul settings.
        cancel: Event that interrupts a pending backoff wait when set.

    Raises:
        KVError: If the TLS configuration is invalid.
    """
    client = ConsulClient(config)
    logger.debug("Consul client for %s", client.address)

    if not config.retry.enabled:
        return client
    return RetryingLister(client, RetryPolicy.from_config(config.retry), cancel)
