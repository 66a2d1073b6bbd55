"""Relay networks and the listener serving inbound relay slates."""

from slate_wallet.relay.client import RelayClient
from slate_wallet.relay.listener import ListenerReport, RelayListener
from slate_wallet.relay.pubsub import MemoryRelay, RedisRelay, RelayNetwork

__all__ = [
    "ListenerReport",
    "MemoryRelay",
    "RedisRelay",
    "RelayClient",
    "RelayListener",
    "RelayNetwork",
]
