"""Upload, approve, download and status flows for storage actions.

Each flow runs strictly in sequence under one command deadline: the delegated
address is known before the message is built, the message is acknowledged
before bytes move, and nothing is retried here. A failed step raises its
typed error and the command ends.
"""

from __future__ import annotations

import base64
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, NamedTuple, Optional

import structlog
from pydantic import ValidationError

from lumera_ica.addresses import resolve_identity
from lumera_ica.chain import ChainCLI
from lumera_ica.config import Config
from lumera_ica.deadline import Deadline
from lumera_ica.errors import ActionStateMismatchError, ConfigError, ICAClientError, UploadError
from lumera_ica.ica import CLITransport, DelegatedAccountCoordinator, parse_gas_prices
from lumera_ica.keyring import ExpectedKey, KeyringHandle, open_keyring
from lumera_ica.ledger import HostLedger
from lumera_ica.mesh import StorageMeshClient
from lumera_ica.messages import (
    build_approve_action_msg,
    build_cascade_metadata,
    build_request_action_msg,
    expiration_from_now,
    sign_cascade_metadata,
    size_in_kbs,
)
from lumera_ica.report import ActionStatusResult, WorkflowResult
from lumera_ica.schemas import ActionState, metadata_file_name

log = structlog.get_logger(__name__)

RESUMABLE_STATE = ActionState.PENDING


class BestEffort(NamedTuple):
    """Outcome of a lookup that may fail without failing the command."""

    value: Optional[str]
    error: Optional[Exception] = None


@dataclass
class ActionWorkflow:
    config: Config
    keyring: KeyringHandle
    coordinator: DelegatedAccountCoordinator
    ledger: HostLedger
    mesh: Optional[StorageMeshClient]
    deadline: Deadline

    def _require_mesh(self) -> StorageMeshClient:
        if self.mesh is None:
            raise ConfigError("lumera.storage_endpoint is required to move file bytes")
        return self.mesh

    def _sign(self, message: bytes) -> bytes:
        return self.keyring.sign(self.config.controller.key_name, message, deadline=self.deadline)

    def _mesh_signature(self, action_id: str) -> str:
        return base64.b64encode(self._sign(action_id.encode("utf-8"))).decode("ascii")

    def upload(
        self,
        file_path: str | Path,
        *,
        public: bool = False,
        action_id: str | None = None,
    ) -> WorkflowResult:
        mesh = self._require_mesh()
        path = Path(file_path).expanduser().resolve()
        if not path.is_file():
            raise UploadError(f"file not found: {path}")
        if action_id:
            return self._resume_upload(mesh, path, action_id, public=public)
        return self._fresh_upload(mesh, path, public=public)

    def _fresh_upload(self, mesh: StorageMeshClient, path: Path, *, public: bool) -> WorkflowResult:
        ica_address = self.coordinator.ensure_address(self.deadline)

        metadata = sign_cascade_metadata(build_cascade_metadata(path, public=public), self._sign)
        price = self.ledger.get_action_fee(size_in_kbs(metadata["file_size"]), deadline=self.deadline)
        msg = build_request_action_msg(
            creator=ica_address,
            metadata=metadata,
            price=price,
            expiration_time=expiration_from_now(),
            app_pubkey=self.coordinator.app_pubkey,
        )
        ack = self.coordinator.send_request_action(msg, self.deadline)
        log.info("action_requested", action_id=ack.action_id, tx_hash=ack.tx_hash, price=price)

        task_id = mesh.upload(
            ack.action_id,
            path,
            signer_address=ica_address,
            signature_b64=self._mesh_signature(ack.action_id),
            deadline=self.deadline,
        )
        return WorkflowResult(
            action_id=ack.action_id,
            tx_hash=ack.tx_hash,
            task_id=task_id,
            ica_address=ica_address,
            ica_owner_address=self.coordinator.owner_address,
            file=str(path),
            is_public=public,
        )

    def _resume_upload(
        self,
        mesh: StorageMeshClient,
        path: Path,
        action_id: str,
        *,
        public: bool,
    ) -> WorkflowResult:
        action = self.ledger.get_action(action_id, deadline=self.deadline)
        if action.state != RESUMABLE_STATE:
            raise ActionStateMismatchError(
                action_id, actual=action.state.value, expected=RESUMABLE_STATE.value
            )
        task_id = mesh.upload(
            action_id,
            path,
            signer_address=action.creator,
            signature_b64=self._mesh_signature(action_id),
            deadline=self.deadline,
        )
        is_public = action.is_public
        return WorkflowResult(
            action_id=action_id,
            tx_hash="",
            task_id=task_id,
            ica_address=action.creator,
            ica_owner_address=self.coordinator.owner_address,
            file=str(path),
            is_public=public if is_public is None else is_public,
        )

    def approve(self, action_id: str, *, ica_address: str | None = None) -> WorkflowResult:
        # Approval never registers; a missing account surfaces as NotFoundError.
        address = (ica_address or "").strip() or self.coordinator.query_address(self.deadline)
        msg = build_approve_action_msg(creator=address, action_id=action_id)
        tx_hash = self.coordinator.send_approve_action(msg, self.deadline)
        log.info("action_approved", action_id=action_id, tx_hash=tx_hash)
        return WorkflowResult(
            action_id=action_id,
            tx_hash=tx_hash,
            ica_address=address,
            ica_owner_address=self.coordinator.owner_address,
        )

    def lookup_file_name(self, action_id: str) -> BestEffort:
        try:
            action = self.ledger.get_action(action_id, deadline=self.deadline)
        except (ICAClientError, ValidationError) as exc:
            return BestEffort(None, exc)
        return BestEffort(metadata_file_name(action.metadata))

    def download(self, action_id: str, out_dir: str | Path) -> WorkflowResult:
        mesh = self._require_mesh()
        owner = self.coordinator.owner_address
        downloaded = mesh.download(
            action_id,
            Path(out_dir).expanduser(),
            signer_address=owner,
            signature_b64=self._mesh_signature(action_id),
            deadline=self.deadline,
        )
        file_name, lookup_error = self.lookup_file_name(action_id)
        if lookup_error is not None:
            log.debug("file_name_lookup_skipped", action_id=action_id, error=str(lookup_error))
        return WorkflowResult(
            action_id=downloaded.action_id,
            task_id=downloaded.task_id,
            output_path=downloaded.output_path,
            file_name=file_name or "",
        )

    def status(self, action_id: str) -> ActionStatusResult:
        return ActionStatusResult.from_action(self.ledger.get_action(action_id, deadline=self.deadline))


@contextmanager
def open_workflow(config: Config, deadline: Deadline) -> Iterator[ActionWorkflow]:
    """Open the keystore, derive identities and wire the collaborators."""
    controller_cfg = config.controller
    host_cfg = config.lumera
    controller_binary = controller_cfg.binary or host_cfg.binary
    gas_prices = parse_gas_prices(controller_cfg.gas_prices)

    keyring = open_keyring(
        controller_cfg,
        binary=controller_binary,
        expected=[
            ExpectedKey(controller_cfg.key_name, controller_cfg.key_type, "controller.key_type"),
            ExpectedKey(host_cfg.key_name, host_cfg.key_type, "lumera.key_type"),
        ],
        deadline=deadline,
    )
    identity = resolve_identity(keyring, config, deadline=deadline)
    log.debug(
        "identity_resolved",
        controller_address=identity.controller_address,
        host_address=identity.host_address,
    )

    ledger = HostLedger.from_config(host_cfg)
    controller_cli = ChainCLI(
        binary=controller_binary,
        node=controller_cfg.rpc_endpoint,
        chain_id=controller_cfg.chain_id,
        gas_prices=gas_prices,
    )
    coordinator = DelegatedAccountCoordinator(
        CLITransport(controller_cli, ledger.cli, keyring),
        controller_cfg,
        owner_address=identity.controller_address,
        owner_key=keyring.get_key(controller_cfg.key_name, deadline=deadline),
    )
    with ExitStack() as stack:
        mesh = None
        if host_cfg.storage_endpoint:
            mesh = stack.enter_context(StorageMeshClient(host_cfg.storage_endpoint))
        yield ActionWorkflow(
            config=config,
            keyring=keyring,
            coordinator=coordinator,
            ledger=ledger,
            mesh=mesh,
            deadline=deadline,
        )
