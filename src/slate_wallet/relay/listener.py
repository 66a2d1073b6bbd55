"""Relay listener: serves inbound slates addressed to this wallet.

One listener runs per wallet session. Inbound messages land on an
``asyncio.Queue`` fed by the relay subscription; the loop blocks on that
queue until a message or the teardown sentinel arrives. A message that
answers one of our own pending sends resolves the waiting future; any other
slate goes through the receiver workflow and the countersigned result is
published back to its origin. A failing message is reported and skipped.
"""

from __future__ import annotations

import asyncio
import collections
import contextlib
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from slate_wallet.engine.services.foreign_service import ReceiveState
from slate_wallet.errors.wallet_errors import WalletError
from slate_wallet.relay.client import decode_envelope

if TYPE_CHECKING:
    from collections.abc import Callable

    from slate_wallet.engine.services.foreign_service import ForeignService
    from slate_wallet.metrics.collector import WalletMetrics
    from slate_wallet.relay.client import RelayClient
    from slate_wallet.slate.models import Slate

logger = logging.getLogger(__name__)

_TEARDOWN = object()
_MAX_REPORTS = 100


@dataclass(frozen=True)
class ListenerReport:
    """What happened to one inbound message."""

    outcome: str  # "reply", "countersigned" or "error"
    origin: str | None = None
    slate_id: str | None = None
    error: str | None = None


class RelayListener:
    """Background task routing inbound relay slates.

    Usage::

        listener = RelayListener(relay_client, foreign_service)
        await listener.start()
        ...
        await listener.stop()
    """

    def __init__(
        self,
        relay: RelayClient,
        foreign: ForeignService,
        *,
        account: str | None = None,
        metrics: WalletMetrics | None = None,
        reporter: Callable[[ListenerReport], None] | None = None,
    ) -> None:
        self._relay = relay
        self._foreign = foreign
        self._account = account
        self._metrics = metrics
        self._reporter = reporter
        self._inbound: asyncio.Queue[str | object] = asyncio.Queue()
        self._pending: dict[str, asyncio.Future[Slate]] = {}
        self._task: asyncio.Task[None] | None = None
        self._subscribed = False
        self.reports: collections.deque[ListenerReport] = collections.deque(maxlen=_MAX_REPORTS)

    @property
    def address(self) -> str:
        return self._relay.address

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Subscribe to this wallet's relay address and start the loop."""
        if self.is_running:
            return
        self._inbound = asyncio.Queue()
        await self._relay.network.subscribe(self.address, self._on_message)
        self._subscribed = True
        self._task = asyncio.create_task(self._run(), name=f"relay-listener-{self.address}")
        logger.info("Relay listener started on %s", self.address)

    async def stop(self) -> None:
        """Tear down the subscription and wait for the loop to exit."""
        if self._subscribed:
            self._subscribed = False
            await self._relay.network.unsubscribe(self.address)
        if self._task is not None:
            self._inbound.put_nowait(_TEARDOWN)
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        for future in self._pending.values():
            if not future.done():
                future.cancel()
        self._pending.clear()
        logger.info("Relay listener stopped on %s", self.address)

    # ------------------------------------------------------------------
    # Reply correlation
    # ------------------------------------------------------------------

    def expect_reply(self, slate_id: str) -> asyncio.Future[Slate]:
        """Future resolved when a slate with ``slate_id`` comes back."""
        future: asyncio.Future[Slate] = asyncio.get_running_loop().create_future()
        self._pending[slate_id] = future
        return future

    def forget(self, slate_id: str) -> None:
        self._pending.pop(slate_id, None)

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def _on_message(self, raw: str | None) -> None:
        self._inbound.put_nowait(_TEARDOWN if raw is None else raw)

    async def _run(self) -> None:
        while True:
            item = await self._inbound.get()
            if item is _TEARDOWN:
                break
            assert isinstance(item, str)
            await self._handle(item)
        self._subscribed = False

    async def _handle(self, raw: str) -> None:
        origin: str | None = None
        slate_id: str | None = None
        try:
            envelope = decode_envelope(raw)
            origin, slate_id = envelope.origin, envelope.slate.id

            pending = self._pending.get(slate_id)
            if pending is not None:
                if not pending.done():
                    pending.set_result(envelope.slate)
                self._report(ListenerReport("reply", origin, slate_id))
                return

            result = await self._foreign.receive_tx(envelope.slate, self._account)
            await self._relay.send(origin, result)
            self._report(ListenerReport(ReceiveState.COUNTERSIGNED.value, origin, slate_id))
            logger.info("Countersigned slate %s dispatched to %s", slate_id, origin)
        except WalletError as exc:
            logger.warning("Relay message from %s rejected: %s", origin or "unknown", exc.message)
            self._report(ListenerReport("error", origin, slate_id, exc.message))
        except Exception as exc:
            logger.exception("Relay message from %s failed", origin or "unknown")
            self._report(ListenerReport("error", origin, slate_id, str(exc)))

    def _report(self, report: ListenerReport) -> None:
        self.reports.append(report)
        if self._metrics is not None:
            self._metrics.record_relay_message(report.outcome)
        if self._reporter is not None:
            try:
                self._reporter(report)
            except Exception:
                logger.exception("Relay listener reporter failed")
