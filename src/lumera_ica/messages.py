"""Host-chain action message builders/signers."""

from __future__ import annotations

import base64
import hashlib
import json
import math
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable

from lumera_ica.schemas import ACTION_TYPE_CASCADE

MSG_REQUEST_ACTION_TYPE_URL = "/lumera.action.v1.MsgRequestAction"
MSG_APPROVE_ACTION_TYPE_URL = "/lumera.action.v1.MsgApproveAction"
ICS27_VERSION = "ics27-1"
DEFAULT_ACTION_TTL = timedelta(hours=25)
PRICE_DENOM = "ulume"

_HASH_CHUNK = 1024 * 1024


def _canonical_bytes(payload: dict) -> bytes:
    return json.dumps(
        payload,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    ).encode("utf-8")


def file_data_hash(path: Path) -> str:
    digest = hashlib.sha256()
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(_HASH_CHUNK), b""):
            digest.update(chunk)
    return base64.b64encode(digest.digest()).decode("ascii")


def size_in_kbs(size_bytes: int) -> int:
    return max(1, math.ceil(size_bytes / 1024))


def build_cascade_metadata(path: Path, *, public: bool) -> dict:
    if not path.is_file():
        raise ValueError(f"file not found: {path}")
    return {
        "data_hash": file_data_hash(path),
        "file_name": path.name,
        "file_size": path.stat().st_size,
        "public": bool(public),
        "signatures": "",
    }


def build_metadata_to_sign(metadata: dict) -> bytes:
    """Canonical bytes of the metadata with the signature field cleared."""
    for field in ("data_hash", "file_name"):
        if not isinstance(metadata.get(field), str) or not metadata[field]:
            raise ValueError(f"{field} must be a non-empty string")
    unsigned = dict(metadata)
    unsigned["signatures"] = ""
    return _canonical_bytes(unsigned)


def sign_cascade_metadata(metadata: dict, sign: Callable[[bytes], bytes]) -> dict:
    signed = dict(metadata)
    signature = sign(build_metadata_to_sign(metadata))
    signed["signatures"] = base64.b64encode(signature).decode("ascii")
    return signed


def expiration_from_now(ttl: timedelta = DEFAULT_ACTION_TTL, *, now: datetime | None = None) -> int:
    current = now or datetime.now(timezone.utc)
    return int((current + ttl).timestamp())


def build_request_action_msg(
    *,
    creator: str,
    metadata: dict,
    price: str,
    expiration_time: int,
    app_pubkey: bytes,
    action_type: str = ACTION_TYPE_CASCADE,
) -> dict:
    if not creator:
        raise ValueError("creator must be a non-empty address")
    if not price:
        raise ValueError("price must be set")
    return {
        "@type": MSG_REQUEST_ACTION_TYPE_URL,
        "creator": creator,
        "actionType": action_type,
        "metadata": json.dumps(metadata, sort_keys=True, separators=(",", ":")),
        "price": price,
        "expirationTime": str(int(expiration_time)),
        "appPubkey": base64.b64encode(app_pubkey).decode("ascii"),
    }


def build_approve_action_msg(*, creator: str, action_id: str) -> dict:
    if not creator:
        raise ValueError("creator must be a non-empty address")
    if not action_id:
        raise ValueError("action_id must be set")
    return {
        "@type": MSG_APPROVE_ACTION_TYPE_URL,
        "creator": creator,
        "actionId": action_id,
    }


def build_ica_version(*, controller_connection_id: str, host_connection_id: str) -> str:
    """ICS-27 channel version metadata carrying the counterparty connection."""
    return json.dumps(
        {
            "version": ICS27_VERSION,
            "controller_connection_id": controller_connection_id,
            "host_connection_id": host_connection_id,
            "address": "",
            "encoding": "proto3",
            "tx_type": "sdk_multi_msg",
        },
        separators=(",", ":"),
    )
