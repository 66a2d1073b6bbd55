"""Foreign (receiver) role: verify a sender's slate and countersign it."""

from __future__ import annotations

import copy
import enum
import logging
from typing import TYPE_CHECKING

from slate_wallet.errors.definitions import StateError, ValidationError
from slate_wallet.slate.models import RECEIVER_ID, SENDER_ID
from slate_wallet.slate.signatures import build_participant, sign_partial, verify_messages

if TYPE_CHECKING:
    from slate_wallet.engine.client import WalletSession
    from slate_wallet.slate.models import Slate

logger = logging.getLogger(__name__)


class ReceiveState(enum.StrEnum):
    """Stages of one receive invocation."""

    RECEIVED = "received"
    VERIFIED = "verified"
    COUNTERSIGNED = "countersigned"


class ForeignService:
    """Receiver workflow, stateless per invocation.

    The receiver never reserves outputs of its own: it adds a fresh output
    for the amount and contributes participant 1's signature.
    """

    def __init__(self, session: WalletSession) -> None:
        self._session = session

    def verify(self, slate: Slate) -> None:
        """Check the message signatures already on ``slate``.

        Raises:
            ValidationError: If any message signature fails.
        """
        verify_messages(slate)

    async def receive(
        self, slate: Slate, account: str | None = None, message: str | None = None
    ) -> Slate:
        """Add participant 1's contribution and return the countersigned slate.

        The caller's slate object is left untouched.

        Raises:
            StateError: If the slate is already fully signed or was received before.
            ValidationError: If the slate is not a well-formed sender slate.
        """
        if len(slate.participant_data) >= slate.num_participants:
            msg = f"slate {slate.id} is already fully signed"
            raise StateError(msg)
        if slate.participant_ids() != [SENDER_ID]:
            msg = f"slate {slate.id} must carry exactly the sender's contribution"
            raise ValidationError(msg)
        if slate.amount <= 0:
            msg = f"slate {slate.id} has a non-positive amount"
            raise ValidationError(msg)

        account = account or self._session.config.wallet.account
        out = await self._session.reservations.record_received(
            slate.id, account, slate.amount, message
        )

        result = copy.deepcopy(slate)
        result.outputs.append(out.commit)
        keychain = self._session.keychain
        blind = keychain.derive_key(account, out.key_index)
        result.add_participant(
            build_participant(
                RECEIVER_ID, blind, keychain.nonce(account, slate.id), message=message
            )
        )
        sign_partial(result, RECEIVER_ID, blind)
        return result

    async def receive_tx(
        self, slate: Slate, account: str | None = None, message: str | None = None
    ) -> Slate:
        """Verify then countersign; the path used by every transport."""
        logger.debug("Slate %s %s", slate.id, ReceiveState.RECEIVED)
        self.verify(slate)
        logger.debug("Slate %s %s", slate.id, ReceiveState.VERIFIED)
        result = await self.receive(slate, account, message)
        logger.info("Slate %s %s for %d", slate.id, ReceiveState.COUNTERSIGNED, slate.amount)
        return result
