from __future__ import annotations

import base64
import json

import pytest

from conftest import make_action
from lumera_ica.messages import (
    build_approve_action_msg,
    build_cascade_metadata,
    build_ica_version,
    build_metadata_to_sign,
    build_request_action_msg,
    size_in_kbs,
)
from lumera_ica.schemas import (
    ActionState,
    CascadeMetadata,
    UnknownMetadata,
    metadata_file_name,
    normalize_action_state,
    parse_action_metadata,
)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("ACTION_STATE_PENDING", ActionState.PENDING),
        ("ACTION_STATE_DONE", ActionState.DONE),
        ("approved", ActionState.APPROVED),
        ("ACTION_STATE_SOMETHING_NEW", ActionState.UNKNOWN),
        ("", ActionState.UNKNOWN),
    ],
)
def test_normalize_action_state(raw, expected) -> None:
    assert normalize_action_state(raw) is expected


def test_metadata_variant_is_selected_by_action_type() -> None:
    raw = {"dataHash": "aGFzaA==", "fileName": "a.txt", "public": True}
    cascade = parse_action_metadata("CASCADE", raw)
    assert isinstance(cascade, CascadeMetadata)
    assert cascade.file_name == "a.txt"
    other = parse_action_metadata("SENSE", raw)
    assert isinstance(other, UnknownMetadata)
    assert metadata_file_name(other) is None


def test_metadata_accepts_base64_json() -> None:
    encoded = base64.b64encode(json.dumps({"file_name": "b.bin", "public": False}).encode()).decode()
    metadata = parse_action_metadata("CASCADE", encoded)
    assert metadata.kind == "cascade"
    assert metadata.public is False


def test_action_record_normalizes_ledger_json() -> None:
    action = make_action("7", state="ACTION_STATE_EXPIRED")
    assert action.action_id == "7"
    assert action.state is ActionState.EXPIRED
    assert action.action_type == "CASCADE"
    assert action.price == "10000ulume"
    assert action.block_height == 314
    assert len(action.app_pubkey) == 33
    assert action.is_public is True


def test_metadata_signing_bytes_ignore_existing_signature(tmp_path) -> None:
    path = tmp_path / "notes.txt"
    path.write_text("hello", encoding="utf-8")
    metadata = build_cascade_metadata(path, public=True)
    assert metadata["data_hash"] == "LPJNul+wow4m6DsqxbninhsWHlwfp0JecwQzYpOLmCQ="
    assert metadata["file_size"] == 5
    signed = dict(metadata, signatures="c2ln")
    assert build_metadata_to_sign(signed) == build_metadata_to_sign(metadata)
    with pytest.raises(ValueError):
        build_metadata_to_sign(dict(metadata, file_name=""))


def test_message_builders() -> None:
    msg = build_request_action_msg(
        creator="lumera1ica",
        metadata={"file_name": "a"},
        price="10ulume",
        expiration_time=1700000000,
        app_pubkey=b"\x02" * 33,
    )
    assert msg["expirationTime"] == "1700000000"
    assert json.loads(msg["metadata"]) == {"file_name": "a"}
    with pytest.raises(ValueError):
        build_request_action_msg(
            creator="", metadata={}, price="1ulume", expiration_time=1, app_pubkey=b""
        )
    assert build_approve_action_msg(creator="lumera1ica", action_id="5")["actionId"] == "5"
    with pytest.raises(ValueError):
        build_approve_action_msg(creator="lumera1ica", action_id="")


def test_ica_version_and_sizes() -> None:
    version = json.loads(build_ica_version(controller_connection_id="connection-0", host_connection_id="connection-9"))
    assert version["version"] == "ics27-1"
    assert version["host_connection_id"] == "connection-9"
    assert size_in_kbs(0) == 1
    assert size_in_kbs(1024) == 1
    assert size_in_kbs(1025) == 2
