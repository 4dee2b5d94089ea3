"""Relay engine: upstream link, client registry, acceptor and broadcaster."""

from .acceptor import DownstreamAcceptor
from .broadcaster import Broadcaster
from .registry import ClientRegistry, DownstreamClient, QueuedDownstreamClient
from .service import RelayContext, RelayService
from .upstream import UpstreamDisconnected, UpstreamLink

__all__ = [
    "DownstreamAcceptor",
    "Broadcaster",
    "ClientRegistry",
    "DownstreamClient",
    "QueuedDownstreamClient",
    "RelayContext",
    "RelayService",
    "UpstreamDisconnected",
    "UpstreamLink"
]
