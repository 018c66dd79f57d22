"""Host-ledger action records (Lumera action module)."""

from __future__ import annotations

import base64
import binascii
import json
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator

ACTION_TYPE_CASCADE = "CASCADE"
_STATE_PREFIX = "ACTION_STATE_"
_TYPE_PREFIX = "ACTION_TYPE_"


class ActionState(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    DONE = "DONE"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    FAILED = "FAILED"
    EXPIRED = "EXPIRED"
    UNSPECIFIED = "UNSPECIFIED"
    UNKNOWN = "UNKNOWN"


def normalize_action_state(raw: object) -> ActionState:
    value = str(raw or "").strip().upper()
    if value.startswith(_STATE_PREFIX):
        value = value[len(_STATE_PREFIX) :]
    try:
        return ActionState(value)
    except ValueError:
        return ActionState.UNKNOWN


def normalize_action_type(raw: object) -> str:
    value = str(raw or "").strip().upper()
    if value.startswith(_TYPE_PREFIX):
        value = value[len(_TYPE_PREFIX) :]
    return value


class CascadeMetadata(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    kind: Literal["cascade"] = "cascade"
    data_hash: str = Field("", validation_alias=AliasChoices("data_hash", "dataHash"))
    file_name: str = Field("", validation_alias=AliasChoices("file_name", "fileName"))
    file_size: Optional[int] = Field(None, validation_alias=AliasChoices("file_size", "fileSize"))
    public: bool = False
    signatures: str = ""


class UnknownMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["unknown"] = "unknown"
    action_type: str = ""
    raw: Any = None


ActionMetadata = Annotated[Union[CascadeMetadata, UnknownMetadata], Field(discriminator="kind")]


def _decode_metadata_payload(raw: object) -> dict[str, Any] | None:
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    if not isinstance(raw, str) or not raw.strip():
        return None
    candidates = [raw]
    try:
        candidates.append(base64.b64decode(raw, validate=True).decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, ValueError):
        pass
    for candidate in candidates:
        try:
            payload = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(payload, dict):
            return payload
    return None


def parse_action_metadata(action_type: str, raw: object) -> CascadeMetadata | UnknownMetadata:
    """Select the metadata shape by action type; undecodable payloads stay unknown."""
    payload = _decode_metadata_payload(raw)
    if action_type == ACTION_TYPE_CASCADE and payload is not None:
        return CascadeMetadata.model_validate(payload)
    return UnknownMetadata(action_type=action_type, raw=raw)


def metadata_visibility(metadata: CascadeMetadata | UnknownMetadata) -> bool | None:
    if metadata.kind == "cascade":
        return metadata.public
    return None


def metadata_file_name(metadata: CascadeMetadata | UnknownMetadata) -> str | None:
    if metadata.kind == "cascade":
        return metadata.file_name or None
    return None


def _pick(data: dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


def _format_price(raw: Any) -> str:
    if isinstance(raw, dict):
        return f"{raw.get('amount', '')}{raw.get('denom', '')}"
    return str(raw or "")


def _to_int(raw: Any) -> int:
    if isinstance(raw, dict):
        # google.protobuf.Timestamp rendered as {"seconds": ...}
        raw = raw.get("seconds")
    try:
        return int(raw or 0)
    except (TypeError, ValueError):
        return 0


def _decode_b64(raw: Any) -> bytes:
    if isinstance(raw, bytes):
        return raw
    if not raw:
        return b""
    try:
        return base64.b64decode(str(raw), validate=True)
    except (binascii.Error, ValueError):
        return b""


class ActionRecord(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    action_id: str
    creator: str = ""
    action_type: str = ""
    state: ActionState = ActionState.UNKNOWN
    price: str = ""
    expiration_time: int = 0
    block_height: int = 0
    app_pubkey: bytes = b""
    metadata: ActionMetadata

    @model_validator(mode="before")
    @classmethod
    def _from_ledger_json(cls, data: Any) -> Any:
        if not isinstance(data, dict) or isinstance(
            data.get("metadata"), (CascadeMetadata, UnknownMetadata)
        ):
            return data
        action_type = normalize_action_type(_pick(data, "actionType", "action_type", default=""))
        return {
            "action_id": str(_pick(data, "actionID", "actionId", "action_id", default="")),
            "creator": str(_pick(data, "creator", default="")),
            "action_type": action_type,
            "state": normalize_action_state(_pick(data, "state", default="")),
            "price": _format_price(_pick(data, "price", default="")),
            "expiration_time": _to_int(_pick(data, "expirationTime", "expiration_time")),
            "block_height": _to_int(_pick(data, "blockHeight", "block_height")),
            "app_pubkey": _decode_b64(_pick(data, "appPubkey", "app_pubkey")),
            "metadata": parse_action_metadata(action_type, _pick(data, "metadata")),
        }

    @property
    def is_public(self) -> bool | None:
        return metadata_visibility(self.metadata)
