"""Versioned slate wire codec.

Version 2 carries integers as decimal strings. Version 3 adds
``ttl_cutoff_height`` and ``payment_proof``. A slate remembers the version it
arrived in so replies go back in the counterparty's encoding.
"""

from __future__ import annotations

import json
from typing import Any

from slate_wallet.errors.definitions import ConfigError, StateError, ValidationError
from slate_wallet.slate.models import ParticipantData, Slate

CURRENT_VERSION = 3
SUPPORTED_VERSIONS: tuple[int, ...] = (2, 3)
BLOCK_HEADER_VERSION = 2


def resolve_version(target_version: int | None) -> int:
    """Pick the wire version; ``None`` means the newest supported.

    Raises:
        ConfigError: If the version is not supported.
    """
    if target_version is None:
        return CURRENT_VERSION
    if target_version not in SUPPORTED_VERSIONS:
        msg = f"unsupported slate version: {target_version}"
        raise ConfigError(msg)
    return target_version


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------


def _num(value: int | None, version: int) -> int | str | None:
    if value is None:
        return None
    return str(value) if version == 2 else value


def _encode_participant(p: ParticipantData, version: int) -> dict[str, Any]:
    return {
        "id": _num(p.id, version),
        "public_blind_excess": p.public_blind_excess,
        "public_nonce": p.public_nonce,
        "part_sig": p.part_sig,
        "message": p.message,
        "message_sig": p.message_sig,
    }


def encode_slate(slate: Slate, version: int | None = None) -> dict[str, Any]:
    """Encode ``slate`` as a JSON-ready dict.

    Args:
        slate: The slate to encode.
        version: Wire version; defaults to the slate's own version.

    Raises:
        ConfigError: If the version is not supported.
    """
    v = resolve_version(version if version is not None else slate.version)
    kernel: dict[str, Any] = {
        "features": "Plain",
        "fee": _num(slate.fee, v),
        "lock_height": _num(slate.lock_height, v),
        "excess": slate.kernel_excess,
        "excess_sig": slate.kernel_sig,
    }
    data: dict[str, Any] = {
        "version_info": {
            "version": v,
            "orig_version": slate.version,
            "block_header_version": BLOCK_HEADER_VERSION,
        },
        "num_participants": slate.num_participants,
        "id": slate.id,
        "tx": {
            "body": {
                "inputs": [{"features": "Plain", "commit": c} for c in slate.inputs],
                "outputs": [{"features": "Plain", "commit": c} for c in slate.outputs],
                "kernels": [kernel],
            },
        },
        "amount": _num(slate.amount, v),
        "fee": _num(slate.fee, v),
        "height": _num(slate.height, v),
        "lock_height": _num(slate.lock_height, v),
        "participant_data": [_encode_participant(p, v) for p in slate.participant_data],
    }
    if v >= 3:
        data["ttl_cutoff_height"] = slate.ttl_cutoff_height
        data["payment_proof"] = slate.payment_proof
    return data


def slate_to_json(slate: Slate, version: int | None = None) -> str:
    return json.dumps(encode_slate(slate, version))


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------


def _int(value: Any, name: str) -> int:
    if isinstance(value, bool):
        msg = f"slate field {name!r} must be an integer"
        raise ValidationError(msg)
    try:
        return int(value)
    except (TypeError, ValueError):
        msg = f"slate field {name!r} must be an integer"
        raise ValidationError(msg) from None


def _opt_int(value: Any, name: str) -> int | None:
    return None if value is None else _int(value, name)


def _str(value: Any, name: str) -> str:
    if not isinstance(value, str):
        msg = f"slate field {name!r} must be a string"
        raise ValidationError(msg)
    return value


def _opt_str(value: Any, name: str) -> str | None:
    return None if value is None else _str(value, name)


def decode_slate(data: dict[str, Any]) -> Slate:
    """Decode a wire dict of any supported version.

    Raises:
        ValidationError: If the document is malformed or its version unknown.
    """
    if not isinstance(data, dict):
        msg = "slate must be a JSON object"
        raise ValidationError(msg)
    try:
        info = data["version_info"]
        version = _int(info["version"], "version")
        orig_version = _int(info.get("orig_version", version), "orig_version")
        if version not in SUPPORTED_VERSIONS:
            msg = f"unsupported slate version: {version}"
            raise ValidationError(msg)
        body = data["tx"]["body"]
        kernels = body.get("kernels") or [{}]
        participants = [
            ParticipantData(
                id=_int(p["id"], "participant id"),
                public_blind_excess=_str(p["public_blind_excess"], "public_blind_excess"),
                public_nonce=_str(p["public_nonce"], "public_nonce"),
                part_sig=_opt_str(p.get("part_sig"), "part_sig"),
                message=_opt_str(p.get("message"), "message"),
                message_sig=_opt_str(p.get("message_sig"), "message_sig"),
            )
            for p in data.get("participant_data", [])
        ]
        slate = Slate(
            id=str(data["id"]),
            amount=_int(data["amount"], "amount"),
            fee=_int(data["fee"], "fee"),
            height=_int(data["height"], "height"),
            lock_height=_int(data.get("lock_height", 0), "lock_height"),
            num_participants=_int(data.get("num_participants", 2), "num_participants"),
            version=orig_version if orig_version in SUPPORTED_VERSIONS else version,
            ttl_cutoff_height=_opt_int(data.get("ttl_cutoff_height"), "ttl_cutoff_height"),
            payment_proof=data.get("payment_proof"),
            inputs=[_str(i["commit"], "input commit") for i in body.get("inputs", [])],
            outputs=[_str(o["commit"], "output commit") for o in body.get("outputs", [])],
            kernel_excess=_opt_str(kernels[0].get("excess"), "excess"),
            kernel_sig=kernels[0].get("excess_sig"),
        )
    except (AttributeError, KeyError, TypeError) as exc:
        msg = f"malformed slate: missing or invalid {exc}"
        raise ValidationError(msg) from exc
    # Participants are rebuilt through add_participant to enforce ordering.
    for p in sorted(participants, key=lambda item: item.id):
        try:
            slate.add_participant(p)
        except StateError as exc:
            msg = f"malformed slate: {exc.message}"
            raise ValidationError(msg) from exc
    return slate


def slate_from_json(text: str | bytes) -> Slate:
    """Decode a JSON slate document.

    Raises:
        ValidationError: If the text is not valid JSON or not a valid slate.
    """
    try:
        data = json.loads(text)
    except UnicodeDecodeError as exc:
        msg = f"slate is not valid UTF-8: {exc}"
        raise ValidationError(msg) from exc
    except json.JSONDecodeError as exc:
        msg = f"slate is not valid JSON: {exc}"
        raise ValidationError(msg) from exc
    return decode_slate(data)
