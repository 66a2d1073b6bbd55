"""Asynchronous relay transport.

Publishes the slate to the counterparty's relay address and waits for the
reply with the same slate id, which the session's relay listener hands back.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from slate_wallet.errors.definitions import TransportError
from slate_wallet.transport.base import Destination, DestinationKind, Transport

if TYPE_CHECKING:
    from slate_wallet.engine.client import WalletSession
    from slate_wallet.slate.models import Slate

logger = logging.getLogger(__name__)


class RelayTransport(Transport):
    """Relay exchange bounded by ``relay.send_timeout``.

    Starting the listener on demand is followed by ``relay.settle_delay``
    so the subscription is live before the counterparty can answer.
    """

    kind = DestinationKind.RELAY

    def __init__(self, session: WalletSession) -> None:
        self._session = session

    async def exchange(self, destination: Destination, slate: Slate) -> Slate:
        self._check_kind(destination)
        cfg = self._session.config.relay
        if not cfg.enabled:
            msg = "relay transport is disabled"
            raise TransportError(msg)

        listener, started = await self._session.ensure_listening()
        if started and cfg.settle_delay > 0:
            await asyncio.sleep(cfg.settle_delay)

        future = listener.expect_reply(slate.id)
        try:
            await self._session.relay.send(destination.address, slate)
            logger.info("Slate %s published to %s", slate.id, destination.address)
            reply = await asyncio.wait_for(future, timeout=cfg.send_timeout)
        except TimeoutError as exc:
            msg = f"no reply from {destination.address} within {cfg.send_timeout}s"
            raise TransportError(msg) from exc
        except asyncio.CancelledError:
            task = asyncio.current_task()
            if future.cancelled() and task is not None and not task.cancelling():
                msg = "relay listener stopped while waiting for a reply"
                raise TransportError(msg) from None
            raise
        finally:
            listener.forget(slate.id)
        return reply
