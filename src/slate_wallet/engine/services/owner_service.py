"""Owner (sender) role: build, lock, exchange, finalize, broadcast, cancel.

Sender state machine::

    Draft -> Locked -> Exchanging -> Returned -> Finalized -> Posted
                 \\__________\\__________\\__________\\-> Cancelled

Draft slates live only in memory. Locking creates the transaction record,
and from then on every failure after the lock cancels the transaction
before the error reaches the caller, so no reservation outlives the
operation that took it.
"""

from __future__ import annotations

import logging
from contextlib import nullcontext
from dataclasses import dataclass
from typing import TYPE_CHECKING

from slate_wallet.engine.models.output import OutputStatus
from slate_wallet.engine.models.tx_log import TxState
from slate_wallet.engine.services.output_service import SelectionStrategy
from slate_wallet.errors.definitions import (
    BroadcastError,
    ConfigError,
    StateError,
    StorageError,
    TransportError,
    ValidationError,
)
from slate_wallet.errors.wallet_errors import WalletError
from slate_wallet.slate.models import RECEIVER_ID, SENDER_ID, Slate
from slate_wallet.slate.signatures import (
    build_participant,
    combine,
    sign_partial,
    verify_messages,
    verify_partial,
)
from slate_wallet.slate.versions import decode_slate, encode_slate, resolve_version
from slate_wallet.transport.base import Destination

if TYPE_CHECKING:
    from slate_wallet.engine.client import WalletSession
    from slate_wallet.engine.services.output_service import Selection
    from slate_wallet.transport.base import Transport

logger = logging.getLogger(__name__)

# Unlocked drafts kept per session; the oldest is dropped beyond this.
MAX_DRAFTS = 100
# Attempts to record a node-accepted broadcast before giving up.
_CONSUME_ATTEMPTS = 3


@dataclass
class _Draft:
    account: str
    selection: Selection
    message: str | None
    height: int


class OwnerService:
    """Sender-side transaction orchestrator.

    Usage::

        owner = session.owner
        slate = await owner.init_send_tx(2_000_000_000, "smallest")
        reply = await owner.exchange(slate, transport, destination)
        final = await owner.finalize(reply)
        await owner.broadcast(final)
    """

    def __init__(self, session: WalletSession, *, max_drafts: int = MAX_DRAFTS) -> None:
        self._session = session
        self._drafts: dict[str, _Draft] = {}
        self._max_drafts = max_drafts
        # Accepted by the node but not yet recorded as Posted
        self._unrecorded_posts: set[str] = set()

    # ------------------------------------------------------------------
    # State machine operations
    # ------------------------------------------------------------------

    async def initiate(
        self,
        amount: int,
        selection_strategy: str = SelectionStrategy.SMALLEST,
        target_version: int | None = None,
        message: str | None = None,
        *,
        account: str | None = None,
        ttl_blocks: int | None = None,
    ) -> Slate:
        """Select outputs for ``amount`` and return a Draft slate.

        Raises:
            ConfigError: For a non-positive amount, an invalid account, an unknown
                strategy or an unsupported slate version.
            InsufficientFunds: If no output subset covers amount plus fee.
        """
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            msg = f"amount must be a positive integer, got {amount!r}"
            raise ConfigError(msg)
        if ttl_blocks is not None and ttl_blocks <= 0:
            msg = f"ttl_blocks must be positive, got {ttl_blocks}"
            raise ConfigError(msg)
        account = self._account(account)
        strategy = SelectionStrategy.parse(selection_strategy)
        version = resolve_version(target_version)

        height, _ = await self._session.chain_height()
        selection = await self._session.reservations.select(
            account, amount, strategy, chain_height=height
        )

        slate = Slate.blank(amount, selection.fee, height)
        slate.version = version
        slate.inputs = selection.input_ids
        if ttl_blocks is not None:
            slate.ttl_cutoff_height = height + ttl_blocks

        keychain = self._session.keychain
        slate.add_participant(
            build_participant(
                SENDER_ID,
                keychain.excess_key(account, slate.id),
                keychain.nonce(account, slate.id),
                message=message,
            )
        )
        self._drafts[slate.id] = _Draft(account, selection, message, height)
        while len(self._drafts) > self._max_drafts:
            oldest = next(iter(self._drafts))
            del self._drafts[oldest]
            logger.info("Dropped unlocked draft %s", oldest)
        logger.debug("Draft slate %s for %d from %d inputs", slate.id, amount, len(slate.inputs))
        return slate

    async def lock(self, slate: Slate) -> Slate:
        """Reserve the draft's outputs; Draft -> Locked.

        If a concurrent send took any selected output first, the slate is rebuilt
        on a disjoint set of outputs.

        Raises:
            StateError: If ``slate`` is not a draft built by this wallet.
            InsufficientFunds: If the outputs were taken and nothing else covers it.
        """
        draft = self._drafts.pop(slate.id, None)
        if draft is None:
            msg = f"slate {slate.id} is not an unlocked draft"
            raise StateError(msg)

        result = await self._session.reservations.lock(
            slate.id,
            draft.selection,
            chain_height=draft.height,
            message=draft.message,
            ttl_cutoff_height=slate.ttl_cutoff_height,
        )
        if result.reselected:
            logger.info("Slate %s rebuilt on a disjoint output set", slate.id)
        slate.inputs = result.selection.input_ids
        slate.fee = result.selection.fee
        slate.outputs = [o.commit for o in result.change_outputs]
        self._record_metric(TxState.LOCKED)
        logger.info("Locked %d outputs for slate %s", len(slate.inputs), slate.id)
        return slate

    async def exchange(self, slate: Slate, transport: Transport, destination: Destination) -> Slate:
        """Hand the slate to the counterparty; Locked -> Exchanging -> Returned.

        Raises:
            TransportError: If the exchange fails; the transaction is cancelled first.
        """
        await self._transition(slate.id, TxState.EXCHANGING)
        metrics = self._session.metrics
        tracker = metrics.track_exchange(destination.kind) if metrics else nullcontext()
        try:
            with tracker:
                reply = await transport.exchange(destination, slate)
        except WalletError as exc:
            await self._cancel_after_failure(slate.id, exc)
            if isinstance(exc, TransportError):
                raise
            msg = f"exchange with {destination} failed: {exc.message}"
            raise TransportError(msg) from exc
        except Exception as exc:
            await self._cancel_after_failure(slate.id, exc)
            msg = f"exchange with {destination} failed: {exc}"
            raise TransportError(msg) from exc

        await self._transition(slate.id, TxState.RETURNED)
        return reply

    async def finalize(self, returned: Slate) -> Slate:
        """Verify the counterparty's contribution and complete the kernel.

        Returned -> Finalized. Any verification failure cancels the
        transaction before the error propagates.

        Raises:
            StateError: If the transaction is unknown or not Returned.
            ValidationError: If the returned slate does not verify.
        """
        entry = await self._session.tx_log.get_transaction(returned.id)
        if entry.tx_state is not TxState.RETURNED:
            msg = f"cannot finalize transaction {returned.id} in state {entry.state}"
            raise StateError(msg)

        try:
            await self._verify_returned(returned, entry.account, entry.amount, entry.fee)
            excess = self._session.keychain.excess_key(entry.account, returned.id)
            sign_partial(returned, SENDER_ID, excess)
            combine(returned)
        except WalletError as exc:
            await self._cancel_after_failure(returned.id, exc)
            raise
        except Exception as exc:
            await self._cancel_after_failure(returned.id, exc)
            msg = f"slate {returned.id} could not be finalized: {exc}"
            raise ValidationError(msg) from exc

        await self._transition(
            returned.id, TxState.FINALIZED, stored_tx=encode_slate(returned, returned.version)
        )
        logger.info("Finalized slate %s", returned.id)
        return returned

    async def broadcast(self, slate: Slate, *, fluff: bool = False) -> None:
        """Submit the finalized transaction; Finalized -> Posted.

        Raises:
            StateError: If the transaction is not Finalized.
            BroadcastError: If the node rejects it; the transaction is cancelled first.
            StorageError: If the node accepted it but it could not be recorded as
                Posted; it then refuses cancellation until a later broadcast records it.
        """
        entry = await self._session.tx_log.get_transaction(slate.id)
        if entry.tx_state is not TxState.FINALIZED:
            msg = f"cannot broadcast transaction {slate.id} in state {entry.state}"
            raise StateError(msg)
        if not slate.is_finalized:
            msg = f"slate {slate.id} has no kernel signature"
            raise StateError(msg)

        if slate.id not in self._unrecorded_posts:
            try:
                await self._session.node.broadcast(self._tx_body(slate), fluff=fluff)
            except WalletError as exc:
                await self._cancel_after_failure(slate.id, exc)
                if isinstance(exc, BroadcastError):
                    raise
                raise BroadcastError(exc.message) from exc

        await self._record_posted(slate.id)
        logger.info("Slate %s posted", slate.id)

    async def cancel(self, slate_id: str) -> None:
        """Release the transaction's reservations and mark it Cancelled.

        Raises:
            StateError: If the transaction is unknown, Posted or already Cancelled,
                or was accepted by the node without being recorded.
        """
        if slate_id in self._unrecorded_posts:
            msg = f"cannot cancel transaction {slate_id}: the node already accepted it"
            raise StateError(msg)
        await self._session.reservations.cancel(slate_id)

    def discard(self, slate_id: str) -> bool:
        """Forget an unlocked draft. Returns whether one was held."""
        return self._drafts.pop(slate_id, None) is not None

    # ------------------------------------------------------------------
    # Composite workflows
    # ------------------------------------------------------------------

    async def init_send_tx(
        self,
        amount: int,
        selection_strategy: str = SelectionStrategy.SMALLEST,
        target_version: int | None = None,
        message: str | None = None,
        *,
        account: str | None = None,
        ttl_blocks: int | None = None,
    ) -> Slate:
        """Build and lock in one step; returns the Locked slate."""
        slate = await self.initiate(
            amount,
            selection_strategy,
            target_version,
            message,
            account=account,
            ttl_blocks=ttl_blocks,
        )
        return await self.lock(slate)

    async def send_tx(
        self,
        amount: int,
        destination: Destination | str,
        selection_strategy: str = SelectionStrategy.SMALLEST,
        target_version: int | None = None,
        message: str | None = None,
        *,
        post: bool = True,
    ) -> Slate:
        """Full send: build, lock, exchange, finalize and optionally broadcast.

        Raises:
            TransportError: If the destination is a file path (use ``send_file``).
        """
        if isinstance(destination, str):
            destination = Destination.parse(destination)
        transport = self._session.transport_for(destination)
        if not transport.supports_sync:
            msg = f"{destination.kind} destinations need the manual file workflow"
            raise TransportError(msg)

        slate = await self.init_send_tx(amount, selection_strategy, target_version, message)
        reply = await self.exchange(slate, transport, destination)
        final = await self.finalize(reply)
        if post:
            await self.broadcast(final)
        return final

    async def post_tx(self, slate_id: str, *, fluff: bool = False) -> None:
        """Broadcast the stored transaction of ``slate_id`` again.

        Raises:
            StateError: If the transaction is unknown, already confirmed, not
                finalized, or has no stored transaction.
            BroadcastError: If the node rejects it.
        """
        entry = await self._session.tx_log.get_transaction(slate_id)
        if entry.confirmed:
            msg = "Transaction already confirmed"
            raise StateError(msg)
        if entry.stored_tx is None:
            msg = "transaction data not found"
            raise StateError(msg)

        slate = decode_slate(entry.stored_tx)
        if entry.tx_state is TxState.FINALIZED:
            await self.broadcast(slate, fluff=fluff)
        elif entry.tx_state is TxState.POSTED:
            await self._session.node.broadcast(self._tx_body(slate), fluff=fluff)
            logger.info("Slate %s re-posted", slate_id)
        else:
            msg = f"cannot post transaction {slate_id} in state {entry.state}"
            raise StateError(msg)

    async def send_file(
        self,
        amount: int,
        path: str,
        selection_strategy: str = SelectionStrategy.SMALLEST,
        target_version: int | None = None,
        message: str | None = None,
    ) -> Slate:
        """Build, lock and write the slate to ``path``; Locked -> Exchanging."""
        slate = await self.init_send_tx(amount, selection_strategy, target_version, message)
        await self._transition(slate.id, TxState.EXCHANGING)
        try:
            await self._session.file_transport.send(Destination.file(path), slate)
        except WalletError as exc:
            await self._cancel_after_failure(slate.id, exc)
            raise
        return slate

    async def finalize_file(self, path: str, *, post: bool = False) -> Slate:
        """Read the counterparty's response file and finalize it."""
        returned = await self._session.file_transport.receive(Destination.file(path))
        entry = await self._session.tx_log.get_transaction(returned.id)
        if entry.tx_state is TxState.EXCHANGING:
            await self._transition(returned.id, TxState.RETURNED)
        final = await self.finalize(returned)
        if post:
            await self.broadcast(final)
        return final

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _account(self, account: str | None) -> str:
        account = account if account is not None else self._session.config.wallet.account
        if not isinstance(account, str) or not account.strip():
            msg = f"invalid account: {account!r}"
            raise ConfigError(msg)
        return account

    async def _verify_returned(
        self, returned: Slate, account: str, amount: int, fee: int
    ) -> None:
        if returned.participant_ids() != [SENDER_ID, RECEIVER_ID]:
            msg = f"slate {returned.id} must come back with exactly the receiver's contribution"
            raise ValidationError(msg)
        if returned.amount != amount or returned.fee != fee:
            msg = f"slate {returned.id} amount or fee changed in transit"
            raise ValidationError(msg)

        inputs = await self._session.outputs.reserved_inputs(returned.id)
        change = await self._session.outputs.get_outputs(
            account=account, slate_id=returned.id, statuses=[OutputStatus.UNCONFIRMED]
        )
        if sorted(returned.inputs) != inputs or not {o.id for o in change} <= set(returned.outputs):
            msg = f"slate {returned.id} inputs or change outputs changed in transit"
            raise ValidationError(msg)

        keychain = self._session.keychain
        ours = returned.participant(SENDER_ID)
        expected = build_participant(
            SENDER_ID,
            keychain.excess_key(account, returned.id),
            keychain.nonce(account, returned.id),
        )
        if ours is None or (ours.public_blind_excess, ours.public_nonce) != (
            expected.public_blind_excess,
            expected.public_nonce,
        ):
            msg = f"slate {returned.id} sender contribution was altered"
            raise ValidationError(msg)

        verify_messages(returned)
        verify_partial(returned, RECEIVER_ID)

    @staticmethod
    def _tx_body(slate: Slate) -> dict:
        return encode_slate(slate, slate.version)["tx"]

    async def _transition(self, slate_id: str, target: TxState, **fields: object) -> None:
        await self._session.reservations.transition(slate_id, target, **fields)

    async def _record_posted(self, slate_id: str) -> None:
        for attempt in range(1, _CONSUME_ATTEMPTS + 1):
            try:
                await self._session.reservations.consume(slate_id)
            except StorageError as exc:
                logger.error(
                    "Slate %s accepted by the node but not recorded as posted (attempt %d/%d): %s",
                    slate_id,
                    attempt,
                    _CONSUME_ATTEMPTS,
                    exc.message,
                )
                if attempt == _CONSUME_ATTEMPTS:
                    self._unrecorded_posts.add(slate_id)
                    raise
            else:
                self._unrecorded_posts.discard(slate_id)
                return

    async def _cancel_after_failure(self, slate_id: str, error: BaseException) -> None:
        logger.warning("Cancelling transaction %s after failure: %s", slate_id, error)
        try:
            await self.cancel(slate_id)
        except StateError:
            logger.exception("Compensating cancel of %s failed", slate_id)

    def _record_metric(self, state: TxState) -> None:
        if self._session.metrics is not None:
            self._session.metrics.record_transition(state.value)
