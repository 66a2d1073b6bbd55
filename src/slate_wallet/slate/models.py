"""Slate: the transaction negotiation document passed between participants."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any

from slate_wallet.errors.definitions import StateError
from slate_wallet.utils.crypto import sha256

# Base fee per weight unit, in nanounits
BASE_FEE = 1_000_000

SENDER_ID = 0
RECEIVER_ID = 1


def tx_fee(
    num_inputs: int, num_outputs: int, num_kernels: int = 1, base_fee: int = BASE_FEE
) -> int:
    """Fee for a transaction shape; weight = 4*outputs + kernels - inputs, at least 1."""
    weight = max(4 * num_outputs + num_kernels - num_inputs, 1)
    return weight * base_fee


@dataclass
class ParticipantData:
    """One party's contribution to the slate.

    Keys and signatures are hex strings: ``public_blind_excess`` and
    ``public_nonce`` are compressed secp256k1 points, ``part_sig`` signs the
    kernel digest and ``message_sig`` signs the free-text message.
    """

    id: int
    public_blind_excess: str
    public_nonce: str
    part_sig: str | None = None
    message: str | None = None
    message_sig: str | None = None

    @property
    def is_complete(self) -> bool:
        return self.part_sig is not None


@dataclass
class Slate:
    """A transaction under negotiation.

    Participants are held in id order and may only be appended; ``inputs``
    and ``outputs`` are commitment hex strings.
    """

    id: str
    amount: int
    fee: int
    height: int
    lock_height: int = 0
    num_participants: int = 2
    version: int = 3
    ttl_cutoff_height: int | None = None
    payment_proof: dict[str, Any] | None = None
    inputs: list[str] = field(default_factory=list)
    outputs: list[str] = field(default_factory=list)
    kernel_excess: str | None = None
    kernel_sig: list[str] | None = None
    participant_data: list[ParticipantData] = field(default_factory=list)

    @classmethod
    def blank(cls, amount: int, fee: int, height: int, *, num_participants: int = 2) -> Slate:
        return cls(
            id=str(uuid.uuid4()),
            amount=amount,
            fee=fee,
            height=height,
            lock_height=0,
            num_participants=num_participants,
        )

    # ------------------------------------------------------------------
    # Participants
    # ------------------------------------------------------------------

    def add_participant(self, data: ParticipantData) -> None:
        """Append the next participant's contribution.

        Raises:
            StateError: If the slate is already full or ``data.id`` is not the
                next participant index.
        """
        if len(self.participant_data) >= self.num_participants:
            msg = f"slate {self.id} already has all {self.num_participants} participants"
            raise StateError(msg)
        if any(p.id == data.id for p in self.participant_data):
            msg = f"slate {self.id} already has participant {data.id}"
            raise StateError(msg)
        if data.id != len(self.participant_data):
            msg = f"participant {data.id} out of order on slate {self.id}"
            raise StateError(msg)
        self.participant_data.append(data)

    def participant(self, participant_id: int) -> ParticipantData | None:
        for p in self.participant_data:
            if p.id == participant_id:
                return p
        return None

    @property
    def is_fully_signed(self) -> bool:
        return len(self.participant_data) == self.num_participants and all(
            p.is_complete for p in self.participant_data
        )

    @property
    def is_finalized(self) -> bool:
        return self.kernel_sig is not None

    # ------------------------------------------------------------------
    # Digests
    # ------------------------------------------------------------------

    def kernel_digest(self) -> bytes:
        """Digest every participant signs: what the kernel commits to."""
        parts = [
            self.id,
            str(self.amount),
            str(self.fee),
            str(self.lock_height),
            ",".join(sorted(self.inputs)),
            ",".join(sorted(self.outputs)),
        ]
        return sha256("|".join(parts).encode("utf-8"))

    def participant_ids(self) -> list[int]:
        return [p.id for p in self.participant_data]


def message_digest(message: str) -> bytes:
    return sha256(message.encode("utf-8"))
