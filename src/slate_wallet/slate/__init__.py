"""Slate data model and wire codec."""

from slate_wallet.slate.models import (
    BASE_FEE,
    RECEIVER_ID,
    SENDER_ID,
    ParticipantData,
    Slate,
    message_digest,
    tx_fee,
)
from slate_wallet.slate.versions import (
    CURRENT_VERSION,
    SUPPORTED_VERSIONS,
    decode_slate,
    encode_slate,
    resolve_version,
    slate_from_json,
    slate_to_json,
)

__all__ = [
    "BASE_FEE",
    "CURRENT_VERSION",
    "RECEIVER_ID",
    "SENDER_ID",
    "SUPPORTED_VERSIONS",
    "ParticipantData",
    "Slate",
    "decode_slate",
    "encode_slate",
    "message_digest",
    "resolve_version",
    "slate_from_json",
    "slate_to_json",
    "tx_fee",
]
