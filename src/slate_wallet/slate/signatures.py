"""Signing and verification of participant contributions."""

from __future__ import annotations

from typing import TYPE_CHECKING

from slate_wallet.errors.definitions import ValidationError
from slate_wallet.keychain.keys import public_key, sign_digest, verify_digest
from slate_wallet.slate.models import ParticipantData, message_digest
from slate_wallet.utils.crypto import sha256

if TYPE_CHECKING:
    from slate_wallet.slate.models import Slate


def _hex_bytes(value: str | None, what: str, participant_id: int) -> bytes:
    try:
        return bytes.fromhex(value or "")
    except (TypeError, ValueError):
        msg = f"participant {participant_id}: {what} is not valid hex"
        raise ValidationError(msg) from None


def build_participant(
    participant_id: int,
    blind_key: bytes,
    nonce: bytes,
    *,
    message: str | None = None,
) -> ParticipantData:
    """Contribution without a partial signature yet."""
    message_sig = sign_digest(blind_key, message_digest(message)).hex() if message else None
    return ParticipantData(
        id=participant_id,
        public_blind_excess=public_key(blind_key).hex(),
        public_nonce=public_key(nonce).hex(),
        message=message,
        message_sig=message_sig,
    )


def sign_partial(slate: Slate, participant_id: int, blind_key: bytes) -> None:
    """Attach ``participant_id``'s partial signature over the kernel digest."""
    participant = slate.participant(participant_id)
    if participant is None:
        msg = f"participant {participant_id} is not on slate {slate.id}"
        raise ValidationError(msg)
    participant.part_sig = sign_digest(blind_key, slate.kernel_digest()).hex()


def verify_messages(slate: Slate) -> None:
    """Check every participant's message signature.

    Raises:
        ValidationError: If a message signature is missing or does not verify.
    """
    for p in slate.participant_data:
        if p.message is None and p.message_sig is None:
            continue
        if p.message is None or p.message_sig is None:
            msg = f"participant {p.id}: message and signature must be sent together"
            raise ValidationError(msg)
        pub = _hex_bytes(p.public_blind_excess, "public blind excess", p.id)
        sig = _hex_bytes(p.message_sig, "message signature", p.id)
        if not verify_digest(pub, message_digest(p.message), sig):
            msg = f"participant {p.id}: message signature does not verify"
            raise ValidationError(msg)


def verify_partial(slate: Slate, participant_id: int) -> None:
    """Check one participant's partial signature over the kernel digest.

    Raises:
        ValidationError: If the signature is missing or does not verify.
    """
    p = slate.participant(participant_id)
    if p is None or p.part_sig is None:
        msg = f"participant {participant_id} has not signed slate {slate.id}"
        raise ValidationError(msg)
    pub = _hex_bytes(p.public_blind_excess, "public blind excess", p.id)
    sig = _hex_bytes(p.part_sig, "partial signature", p.id)
    if not verify_digest(pub, slate.kernel_digest(), sig):
        msg = f"participant {participant_id}: partial signature does not verify"
        raise ValidationError(msg)


def combine(slate: Slate) -> None:
    """Fill in the kernel from the verified partial signatures, ordered by participant."""
    ordered = sorted(slate.participant_data, key=lambda p: p.id)
    excess = b"".join(
        _hex_bytes(p.public_blind_excess, "public blind excess", p.id) for p in ordered
    )
    slate.kernel_excess = "09" + sha256(excess).hex()
    slate.kernel_sig = [p.part_sig or "" for p in ordered]
