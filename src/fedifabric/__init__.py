"""fedifabric: asynchronous client for federated social-networking APIs.

This package provides the transport core for Mastodon-compatible servers:
an HTTP gateway with typed errors, `Link`-header pagination, and streaming
subscriptions multiplexed over a shared WebSocket. Thin resource repositories
and a session class sit on top of that core.
"""

__version__ = "0.1.0"

from . import (
    auth,
    client,
    config,
    encoding,
    events,
    exceptions,
    executor,
    log_config,
    pagination,
    resources,
    session,
    streaming,
    types,
)
from .client import Gateway
from .session import FediSession

__all__ = [
    "__version__",
    "FediSession",
    "Gateway",
    "auth",
    "client",
    "config",
    "encoding",
    "events",
    "exceptions",
    "executor",
    "log_config",
    "pagination",
    "resources",
    "session",
    "streaming",
    "types",
]
