"""Relay client: network factory plus the slate envelope format.

An envelope is a JSON object ``{"from": <origin address>, "slate": <slate>}``.
"""

from __future__ import annotations

import json
import logging
import secrets
from dataclasses import dataclass
from typing import TYPE_CHECKING

from redis.exceptions import RedisError

from slate_wallet.config.settings import RelayCoordinator
from slate_wallet.errors.definitions import TransportError, ValidationError
from slate_wallet.slate.versions import decode_slate, encode_slate

if TYPE_CHECKING:
    from slate_wallet.config.settings import RelayConfig
    from slate_wallet.relay.pubsub import RelayNetwork
    from slate_wallet.slate.models import Slate

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Envelope:
    origin: str
    slate: Slate


def encode_envelope(origin: str, slate: Slate, version: int | None = None) -> str:
    return json.dumps({"from": origin, "slate": encode_slate(slate, version)})


def decode_envelope(raw: str) -> Envelope:
    """Parse an inbound relay message.

    Raises:
        ValidationError: If the message is not a well-formed envelope.
    """
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        msg = f"relay message is not valid JSON: {exc}"
        raise ValidationError(msg) from exc
    if not isinstance(data, dict) or not isinstance(data.get("from"), str) or not data["from"]:
        msg = "relay message has no origin address"
        raise ValidationError(msg)
    return Envelope(origin=data["from"], slate=decode_slate(data.get("slate")))


class RelayClient:
    """Owns the relay network connection and this wallet's relay address.

    Usage::

        relay = RelayClient(config.relay)
        await relay.connect()
        await relay.send("counterparty-address", slate)
        await relay.close()
    """

    def __init__(self, config: RelayConfig, *, network: RelayNetwork | None = None) -> None:
        self._config = config
        self._network = network
        self._owns_network = network is None
        self._address = config.address or f"slate-{secrets.token_hex(8)}"

    @property
    def address(self) -> str:
        """This wallet's relay identity."""
        return self._address

    @property
    def network(self) -> RelayNetwork:
        """Return the relay network (must call connect first)."""
        if self._network is None:
            msg = "RelayClient not connected"
            raise RuntimeError(msg)
        return self._network

    @property
    def is_connected(self) -> bool:
        return self._network is not None

    async def connect(self) -> None:
        """Create the network backend based on coordinator type."""
        if self._network is not None:
            return
        if self._config.coordinator == RelayCoordinator.REDIS:
            from slate_wallet.relay.pubsub import RedisRelay

            self._network = RedisRelay(self._config.redis_url, prefix=self._config.prefix)
            logger.info("Relay using Redis (%s)", self._config.redis_url)
        else:
            from slate_wallet.relay.pubsub import MemoryRelay

            self._network = MemoryRelay()
            logger.info("Relay using in-memory network")

    async def close(self) -> None:
        """Close the network backend if this client created it."""
        if self._network is not None and self._owns_network:
            await self._network.close()
        if self._owns_network:
            self._network = None

    async def send(self, to: str, slate: Slate, version: int | None = None) -> None:
        """Publish ``slate`` to relay address ``to``.

        Raises:
            TransportError: If the network refuses the message.
        """
        message = encode_envelope(self._address, slate, version)
        try:
            await self.network.publish(to, message)
        except (OSError, RedisError) as exc:
            msg = f"relay publish to {to} failed: {exc}"
            raise TransportError(msg) from exc
