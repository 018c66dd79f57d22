from __future__ import annotations

import base64
import json
from pathlib import Path
from typing import Any

import pytest
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from lumera_ica.addresses import derive_address
from lumera_ica.config import Config, ControllerChainConfig, HostChainConfig
from lumera_ica.deadline import Deadline
from lumera_ica.errors import KeyringError, NotFoundError
from lumera_ica.ica import AckResult, DelegatedAccountCoordinator
from lumera_ica.keyring import ETH_SECP256K1, SECP256K1, KeyInfo, KeyringHandle
from lumera_ica.mesh import DownloadResult
from lumera_ica.schemas import ActionRecord
from lumera_ica.workflow import ActionWorkflow

OWNER_SECRET = 0x1F2E3D4C5B6A79881F2E3D4C5B6A79881F2E3D4C5B6A79881F2E3D4C5B6A7988
HOST_SECRET = 0x0A0B0C0D0E0F10111213141516171819202122232425262728292A2B2C2D2E2F
ICA_ADDRESS = "lumera1delegatedaccountaddress"


def compressed_pubkey(secret: int) -> bytes:
    key = ec.derive_private_key(secret, ec.SECP256K1())
    return key.public_key().public_bytes(Encoding.X962, PublicFormat.CompressedPoint)


class FakeKeystore:
    def __init__(self, keys: dict[str, tuple[str, int]]) -> None:
        self.keys = keys
        self.show_calls: list[str] = []

    def show(self, name: str, *, deadline: Deadline) -> KeyInfo:
        self.show_calls.append(name)
        if name not in self.keys:
            raise KeyringError(f"key {name} not found in test keyring")
        algorithm, secret = self.keys[name]
        return KeyInfo(name=name, algorithm=algorithm, public_key=compressed_pubkey(secret))

    def export_private_key(self, name: str, *, deadline: Deadline) -> bytes:
        return self.keys[name][1].to_bytes(32, "big")

    def flags(self) -> list[str]:
        return ["--keyring-backend", "test", "--keyring-dir", "/tmp/keyring"]

    def prompt_input(self) -> bytes | None:
        return None


class FakeTransport:
    def __init__(
        self,
        *,
        address: str = "",
        client_id: str | None = "07-tendermint-0",
        status: str = "Active",
        registered_address: str = ICA_ADDRESS,
        ack: AckResult | None = None,
        send_error: Exception | None = None,
    ) -> None:
        self.address = address
        self.client_id = client_id
        self.status = status
        self.registered_address = registered_address
        self.ack = ack or AckResult(tx_hash="CONTROLLERTX", action_id="101", host_tx_hash="HOSTTX")
        self.send_error = send_error
        self.register_calls: list[tuple[str, str, str]] = []
        self.sent: list[dict[str, Any]] = []

    def query_address(self, owner: str, connection_id: str, *, deadline: Deadline) -> str:
        if not self.address:
            raise NotFoundError(f"no interchain account for {owner} on {connection_id}")
        return self.address

    def connection_client_id(self, connection_id: str, *, deadline: Deadline) -> str:
        if self.client_id is None:
            raise NotFoundError(f"connection {connection_id} not found")
        return self.client_id

    def client_status(self, client_id: str, *, deadline: Deadline) -> str:
        return self.status

    def register(self, key_name: str, connection_id: str, *, version: str, deadline: Deadline) -> str:
        self.register_calls.append((key_name, connection_id, version))
        self.address = self.registered_address
        return "REGISTERTX"

    def send(self, key_name: str, connection_id: str, msg: dict[str, Any], *, deadline: Deadline) -> AckResult:
        self.sent.append(msg)
        if self.send_error is not None:
            raise self.send_error
        return self.ack


class FakeLedger:
    def __init__(self, actions: dict[str, ActionRecord] | None = None, fee: str = "10000ulume") -> None:
        self.actions = actions or {}
        self.fee = fee
        self.fee_requests: list[int] = []
        self.lookups: list[str] = []

    def get_action(self, action_id: str, *, deadline: Deadline) -> ActionRecord:
        self.lookups.append(action_id)
        if action_id not in self.actions:
            raise NotFoundError(f"action {action_id} not found")
        return self.actions[action_id]

    def get_action_fee(self, size_kbs: int, *, deadline: Deadline) -> str:
        self.fee_requests.append(size_kbs)
        return self.fee


class FakeMesh:
    def __init__(self, *, download_error: Exception | None = None) -> None:
        self.uploads: list[dict[str, Any]] = []
        self.downloads: list[dict[str, Any]] = []
        self.download_error = download_error

    def upload(self, action_id, file_path, *, signer_address, signature_b64, deadline) -> str:
        self.uploads.append(
            {
                "action_id": action_id,
                "file_path": str(file_path),
                "signer_address": signer_address,
                "signature_b64": signature_b64,
            }
        )
        return f"task-{action_id}"

    def download(self, action_id, out_dir, *, signer_address, signature_b64, deadline) -> DownloadResult:
        self.downloads.append({"action_id": action_id, "signer_address": signer_address})
        if self.download_error is not None:
            raise self.download_error
        Path(out_dir).mkdir(parents=True, exist_ok=True)
        target = Path(out_dir) / f"{action_id}.bin"
        target.write_bytes(b"stored bytes")
        return DownloadResult(action_id=action_id, task_id=f"task-{action_id}", output_path=str(target))


def make_action(
    action_id: str = "42",
    *,
    state: str = "ACTION_STATE_PENDING",
    creator: str = "lumera1existingcreator",
    metadata: Any = None,
) -> ActionRecord:
    if metadata is None:
        metadata = json.dumps(
            {"data_hash": "aGFzaA==", "file_name": "report.pdf", "file_size": 2048, "public": True}
        )
    return ActionRecord.model_validate(
        {
            "actionID": action_id,
            "creator": creator,
            "actionType": "ACTION_TYPE_CASCADE",
            "state": state,
            "price": {"denom": "ulume", "amount": "10000"},
            "expirationTime": "1767225600",
            "blockHeight": "314",
            "appPubkey": base64.b64encode(compressed_pubkey(OWNER_SECRET)).decode("ascii"),
            "metadata": metadata,
        }
    )


@pytest.fixture
def config(tmp_path) -> Config:
    return Config(
        lumera=HostChainConfig(
            chain_id="lumera-devnet-1",
            grpc_endpoint="localhost:9090",
            rpc_endpoint="tcp://localhost:26657",
            log_level="info",
            key_name="host-key",
            key_type=SECP256K1,
            storage_endpoint="http://mesh.local:8080",
        ),
        controller=ControllerChainConfig(
            chain_id="osmo-devnet-1",
            grpc_endpoint="localhost:19090",
            rpc_endpoint="tcp://localhost:36657",
            binary="osmosisd",
            home=str(tmp_path / "home"),
            key_name="owner",
            key_type=SECP256K1,
            keyring_backend="test",
            keyring_dir=str(tmp_path / "home"),
            account_hrp="osmo",
            connection_id="connection-0",
            counterparty_connection_id="connection-7",
        ),
    )


@pytest.fixture
def keystore() -> FakeKeystore:
    return FakeKeystore(
        {
            "owner": (SECP256K1, OWNER_SECRET),
            "host-key": (SECP256K1, HOST_SECRET),
            "eth-owner": (ETH_SECP256K1, OWNER_SECRET),
        }
    )


@pytest.fixture
def keyring(keystore) -> KeyringHandle:
    return KeyringHandle(keystore, app_name="osmosisd", backend_name="test", directory="/tmp/keyring")


@pytest.fixture
def owner_address(keyring) -> str:
    return derive_address(keyring, "owner", "osmo", deadline=Deadline.after(60))


@pytest.fixture
def build_workflow(config, keyring, owner_address):
    def _build(*, transport, ledger, mesh, deadline: Deadline | None = None) -> ActionWorkflow:
        deadline = deadline or Deadline.after(60)
        coordinator = DelegatedAccountCoordinator(
            transport,
            config.controller,
            owner_address=owner_address,
            owner_key=keyring.get_key("owner", deadline=deadline),
            poll_interval=0.01,
        )
        return ActionWorkflow(
            config=config,
            keyring=keyring,
            coordinator=coordinator,
            ledger=ledger,
            mesh=mesh,
            deadline=deadline,
        )

    return _build
