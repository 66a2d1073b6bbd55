"""Transport adapter interface and the tagged destination type."""

from __future__ import annotations

import abc
import enum
from dataclasses import dataclass
from typing import TYPE_CHECKING

from slate_wallet.errors.definitions import ConfigError, TransportError

if TYPE_CHECKING:
    from slate_wallet.slate.models import Slate

_HTTP_SCHEMES = ("http://", "https://")
_FILE_SCHEME = "file://"
_FILE_SUFFIXES = (".tx", ".json", ".slate", ".response")


class DestinationKind(enum.StrEnum):
    HTTP = "http"
    FILE = "file"
    RELAY = "relay"


@dataclass(frozen=True)
class Destination:
    """Where a slate goes, with the transport decided once at parse time."""

    kind: DestinationKind
    address: str

    @classmethod
    def http(cls, url: str) -> Destination:
        return cls(DestinationKind.HTTP, url.rstrip("/"))

    @classmethod
    def file(cls, path: str) -> Destination:
        return cls(DestinationKind.FILE, path)

    @classmethod
    def relay(cls, address: str) -> Destination:
        return cls(DestinationKind.RELAY, address)

    @classmethod
    def parse(cls, value: str) -> Destination:
        """Classify a user-supplied destination string.

        ``http(s)://`` URLs use the synchronous transport, ``file://`` URLs and
        things that look like paths use the file transport, and anything else
        is taken as a relay address.

        Raises:
            ConfigError: If ``value`` is empty.
        """
        text = value.strip()
        if not text:
            msg = "destination must not be empty"
            raise ConfigError(msg)
        lowered = text.lower()
        if lowered.startswith(_HTTP_SCHEMES):
            return cls.http(text)
        if lowered.startswith(_FILE_SCHEME):
            return cls.file(text[len(_FILE_SCHEME) :])
        if text.startswith(("/", "./", "../", "~")) or "\\" in text or lowered.endswith(
            _FILE_SUFFIXES
        ):
            return cls.file(text)
        return cls.relay(text)

    def __str__(self) -> str:
        return f"{self.kind}:{self.address}"


class Transport(abc.ABC):
    """Exchanges a slate with a counterparty."""

    kind: DestinationKind

    @property
    def supports_sync(self) -> bool:
        """Whether :meth:`exchange` returns the counterparty's reply."""
        return True

    @abc.abstractmethod
    async def exchange(self, destination: Destination, slate: Slate) -> Slate:
        """Send ``slate`` and return the counterparty's reply.

        Raises:
            TransportError: If the counterparty is unreachable, times out, or
                replies with something that is not a slate.
        """

    async def close(self) -> None:  # noqa: B027
        """Release any held connection."""

    def _check_kind(self, destination: Destination) -> None:
        if destination.kind != self.kind:
            msg = f"{self.kind} transport cannot reach {destination}"
            raise TransportError(msg)
