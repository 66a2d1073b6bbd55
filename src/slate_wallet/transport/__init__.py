"""Slate transports: the destination type and its three exchange variants."""

from slate_wallet.transport.base import Destination, DestinationKind, Transport
from slate_wallet.transport.file import FileTransport
from slate_wallet.transport.http import HTTPTransport
from slate_wallet.transport.relay import RelayTransport

__all__ = [
    "Destination",
    "DestinationKind",
    "FileTransport",
    "HTTPTransport",
    "RelayTransport",
    "Transport",
]
