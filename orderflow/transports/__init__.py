"""Transports that carry stage-changed events to notification consumers."""

from __future__ import annotations

import os
from typing import Callable, Dict, Optional

from ..config import OrderflowConfig, TransportConfig, load_config
from .base import BaseTransport
from .inmemory import InMemoryTransport


def _redis_transport(conf: TransportConfig) -> BaseTransport:
    # imported lazily so in-memory setups never touch the redis client
    from .redis import RedisTransport

    return RedisTransport(
        host=conf.redis.host,
        port=conf.redis.port,
        db=conf.redis.db,
        password=conf.redis.password,
        topic_prefix=conf.redis.topic_prefix,
    )


_BACKENDS: Dict[str, Callable[[TransportConfig], BaseTransport]] = {
    "inmemory": lambda conf: InMemoryTransport(),
    "redis": _redis_transport,
}


def get_transport(
    backend: Optional[str] = None, config: Optional[OrderflowConfig] = None
) -> BaseTransport:
    """Build the transport named by ``backend``, ``ORDERFLOW_TRANSPORT`` or config."""
    config = config or load_config()
    name = (backend or os.getenv("ORDERFLOW_TRANSPORT") or config.transport.backend).lower()
    try:
        build = _BACKENDS[name]
    except KeyError:
        raise ValueError(f"Unsupported transport backend: {name}") from None
    return build(config.transport)


__all__ = ["BaseTransport", "InMemoryTransport", "get_transport"]
