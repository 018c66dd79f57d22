"""Interchain (delegated) account coordination.

``DelegatedAccountCoordinator`` owns the ensure/query/send operations for the
account controlled by the controller key on the host chain. The transport
underneath talks to the chain node binaries: registration and ``send-tx`` on
the controller chain, packet encoding and acknowledgment lookup on the host.
"""

from __future__ import annotations

import json
import re
import tempfile
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Protocol

import structlog

from lumera_ica.chain import ChainCLI, event_attribute, tx_code
from lumera_ica.config import ControllerChainConfig
from lumera_ica.deadline import Deadline
from lumera_ica.errors import (
    ChainCommandError,
    ConfigError,
    NotFoundError,
    OperationTimeoutError,
    PreconditionError,
    RegistrationTimeoutError,
    SendAckError,
)
from lumera_ica.keyring import KeyInfo, KeyringHandle
from lumera_ica.messages import build_ica_version

log = structlog.get_logger(__name__)

CLIENT_STATUS_ACTIVE = "Active"
ADDRESS_POLL_INTERVAL = 2.0
ACK_POLL_INTERVAL = 2.0

_DEC_COIN = re.compile(r"^([0-9]+(?:\.[0-9]+)?)([a-zA-Z][a-zA-Z0-9/:._-]{2,127})$")


class RegistrationState(str, Enum):
    UNREGISTERED = "unregistered"
    PENDING = "pending"
    REGISTERED = "registered"


@dataclass(frozen=True)
class DelegatedAccount:
    owner_address: str
    connection_id: str
    delegated_address: str
    registration_state: RegistrationState


@dataclass(frozen=True)
class AckResult:
    tx_hash: str
    action_id: str = ""
    host_tx_hash: str = ""


def parse_gas_prices(raw: str) -> str:
    """Validate a single dec-coin gas price such as ``0.025stake``."""
    value = raw.strip()
    if not value:
        return ""
    entries = [entry for entry in re.split(r"[,\s]+", value) if entry]
    if len(entries) > 1:
        raise ConfigError(
            f"controller.gas_prices must be a single coin, got {len(entries)} entries"
        )
    if not _DEC_COIN.match(entries[0]):
        raise ConfigError(f"controller.gas_prices is not a valid coin: {entries[0]!r}")
    return entries[0]


class ICATransport(Protocol):
    def query_address(self, owner: str, connection_id: str, *, deadline: Deadline) -> str: ...

    def connection_client_id(self, connection_id: str, *, deadline: Deadline) -> str: ...

    def client_status(self, client_id: str, *, deadline: Deadline) -> str: ...

    def register(
        self,
        key_name: str,
        connection_id: str,
        *,
        version: str,
        deadline: Deadline,
    ) -> str: ...

    def send(
        self,
        key_name: str,
        connection_id: str,
        msg: dict[str, Any],
        *,
        deadline: Deadline,
    ) -> AckResult: ...


def _raw_log(tx: dict[str, Any]) -> str:
    return str(tx.get("raw_log") or tx.get("log") or "").strip()


def _parse_ack(raw: str) -> dict[str, Any]:
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise SendAckError(f"acknowledgment is not JSON: {raw!r}") from exc
    if not isinstance(payload, dict):
        raise SendAckError("acknowledgment is not a JSON object")
    return payload


class CLITransport:
    """ICS-27 transport driven through the controller and host node binaries."""

    def __init__(
        self,
        controller: ChainCLI,
        host: ChainCLI,
        keyring: KeyringHandle,
        *,
        ack_poll_interval: float = ACK_POLL_INTERVAL,
    ) -> None:
        self._controller = controller
        self._host = host
        self._keyring = keyring
        self._ack_poll_interval = ack_poll_interval

    def query_address(self, owner: str, connection_id: str, *, deadline: Deadline) -> str:
        payload = self._controller.query(
            "interchain-accounts",
            "controller",
            "interchain-account",
            owner,
            connection_id,
            deadline=deadline,
            kind="query interchain account",
        )
        address = str(payload.get("address") or "").strip()
        if not address:
            raise NotFoundError(f"no interchain account for {owner} on {connection_id}")
        return address

    def connection_client_id(self, connection_id: str, *, deadline: Deadline) -> str:
        payload = self._controller.query(
            "ibc",
            "connection",
            "end",
            connection_id,
            deadline=deadline,
            kind="query connection",
        )
        connection = payload.get("connection")
        client_id = connection.get("client_id") if isinstance(connection, dict) else None
        if not client_id:
            raise NotFoundError(f"connection {connection_id} not found")
        return str(client_id)

    def client_status(self, client_id: str, *, deadline: Deadline) -> str:
        payload = self._controller.query(
            "ibc",
            "client",
            "status",
            client_id,
            deadline=deadline,
            kind="query client status",
        )
        return str(payload.get("status") or "")

    def _broadcast(self, *args: str, key_name: str, deadline: Deadline, kind: str) -> dict[str, Any]:
        return self._controller.broadcast(
            *args,
            key_name=key_name,
            keyring_flags=self._keyring.cli_flags(),
            deadline=deadline,
            kind=kind,
            stdin=self._keyring.prompt_input(),
        )

    def register(
        self,
        key_name: str,
        connection_id: str,
        *,
        version: str,
        deadline: Deadline,
    ) -> str:
        args = ["interchain-accounts", "controller", "register", connection_id]
        if version:
            args.extend(["--version", version])
        response = self._broadcast(
            *args, key_name=key_name, deadline=deadline, kind="register interchain account"
        )
        tx_hash = str(response.get("txhash") or "")
        if tx_code(response) != 0 or not tx_hash:
            raise ChainCommandError(f"register interchain account rejected: {_raw_log(response)}")
        included = self._controller.wait_for_tx(tx_hash, deadline=deadline)
        if tx_code(included) != 0:
            raise ChainCommandError(
                f"register interchain account failed in tx {tx_hash}: {_raw_log(included)}"
            )
        return tx_hash

    def _packet_data(self, msg: dict[str, Any], *, deadline: Deadline) -> str:
        try:
            return self._host.run(
                [
                    "tx",
                    "interchain-accounts",
                    "host",
                    "generate-packet-data",
                    json.dumps(msg, separators=(",", ":")),
                    "--encoding",
                    "proto3",
                ],
                deadline=deadline,
                kind="generate packet data",
            )
        except ChainCommandError as exc:
            raise SendAckError(f"encode interchain packet: {exc}") from exc

    def send(
        self,
        key_name: str,
        connection_id: str,
        msg: dict[str, Any],
        *,
        deadline: Deadline,
    ) -> AckResult:
        packet_data = self._packet_data(msg, deadline=deadline)
        with tempfile.TemporaryDirectory(prefix="lumera-ica-") as workdir:
            packet_path = Path(workdir) / "packet.json"
            packet_path.write_text(packet_data, encoding="utf-8")
            try:
                response = self._broadcast(
                    "interchain-accounts",
                    "controller",
                    "send-tx",
                    connection_id,
                    str(packet_path),
                    key_name=key_name,
                    deadline=deadline,
                    kind="send interchain tx",
                )
            except ChainCommandError as exc:
                raise SendAckError(f"broadcast send-tx: {exc}") from exc

        tx_hash = str(response.get("txhash") or "")
        if tx_code(response) != 0 or not tx_hash:
            raise SendAckError(f"send-tx rejected: {_raw_log(response)}")
        try:
            included = self._controller.wait_for_tx(tx_hash, deadline=deadline)
        except OperationTimeoutError as exc:
            raise SendAckError(f"send-tx {tx_hash} not included: {exc}") from exc
        if tx_code(included) != 0:
            raise SendAckError(f"send-tx {tx_hash} failed: {_raw_log(included)}")

        sequence = event_attribute(included, "packet_sequence", event_type="send_packet")
        dst_channel = event_attribute(included, "packet_dst_channel", event_type="send_packet")
        if not sequence or not dst_channel:
            raise SendAckError(f"send-tx {tx_hash} emitted no send_packet event")
        log.info("ica_packet_sent", tx_hash=tx_hash, sequence=sequence, channel=dst_channel)

        try:
            host_tx = self._wait_for_ack(sequence, dst_channel, deadline=deadline)
        except OperationTimeoutError as exc:
            raise SendAckError(f"acknowledgment for packet {sequence} not observed: {exc}") from exc

        ack = _parse_ack(
            event_attribute(host_tx, "packet_ack", event_type="write_acknowledgement") or "{}"
        )
        if "error" in ack:
            raise SendAckError(f"host execution failed: {ack['error']}")
        return AckResult(
            tx_hash=tx_hash,
            action_id=event_attribute(host_tx, "action_id") or "",
            host_tx_hash=str(host_tx.get("txhash") or ""),
        )

    def _wait_for_ack(self, sequence: str, channel: str, *, deadline: Deadline) -> dict[str, Any]:
        query = (
            f"write_acknowledgement.packet_sequence={sequence} AND "
            f"write_acknowledgement.packet_dst_channel='{channel}'"
        )
        while True:
            try:
                payload = self._host.query("txs", "--query", query, deadline=deadline, kind="query ack")
            except NotFoundError:
                payload = {}
            txs = payload.get("txs") or []
            if txs and isinstance(txs[0], dict):
                return txs[0]
            deadline.check(f"waiting for acknowledgment of packet {sequence}")
            deadline.sleep(self._ack_poll_interval)


class DelegatedAccountCoordinator:
    """Ensure, query and send through the delegated account of one owner key."""

    def __init__(
        self,
        transport: ICATransport,
        cfg: ControllerChainConfig,
        *,
        owner_address: str,
        owner_key: KeyInfo,
        poll_interval: float = ADDRESS_POLL_INTERVAL,
    ) -> None:
        self._transport = transport
        self._cfg = cfg
        self._owner_address = owner_address
        self._owner_key = owner_key
        self._poll_interval = poll_interval
        self._registration_tx = ""

    @property
    def owner_address(self) -> str:
        return self._owner_address

    @property
    def app_pubkey(self) -> bytes:
        return self._owner_key.public_key

    @property
    def connection_id(self) -> str:
        return self._cfg.connection_id

    def query_address(self, deadline: Deadline) -> str:
        return self._transport.query_address(
            self._owner_address, self._cfg.connection_id, deadline=deadline
        )

    def account(self, deadline: Deadline) -> DelegatedAccount:
        try:
            address = self.query_address(deadline)
        except NotFoundError:
            state = (
                RegistrationState.PENDING
                if self._registration_tx
                else RegistrationState.UNREGISTERED
            )
            address = ""
        else:
            state = RegistrationState.REGISTERED
        return DelegatedAccount(
            owner_address=self._owner_address,
            connection_id=self._cfg.connection_id,
            delegated_address=address,
            registration_state=state,
        )

    def _check_preconditions(self, deadline: Deadline) -> None:
        connection_id = self._cfg.connection_id
        try:
            client_id = self._transport.connection_client_id(connection_id, deadline=deadline)
        except NotFoundError as exc:
            raise PreconditionError(f"connection {connection_id} not found") from exc
        try:
            status = self._transport.client_status(client_id, deadline=deadline)
        except NotFoundError as exc:
            raise PreconditionError(f"client {client_id} not found") from exc
        if status != CLIENT_STATUS_ACTIVE:
            raise PreconditionError(f"client {client_id} status is {status or 'unknown'}, not Active")

    def ensure_address(self, deadline: Deadline) -> str:
        """Return the delegated address, registering the account when absent."""
        try:
            return self.query_address(deadline)
        except NotFoundError:
            pass

        self._check_preconditions(deadline)
        version = ""
        if self._cfg.counterparty_connection_id:
            version = build_ica_version(
                controller_connection_id=self._cfg.connection_id,
                host_connection_id=self._cfg.counterparty_connection_id,
            )
        self._registration_tx = self._transport.register(
            self._cfg.key_name,
            self._cfg.connection_id,
            version=version,
            deadline=deadline,
        )
        log.info(
            "ica_registration_submitted",
            tx_hash=self._registration_tx,
            owner=self._owner_address,
            connection_id=self._cfg.connection_id,
        )

        while True:
            try:
                address = self.query_address(deadline)
            except NotFoundError:
                if deadline.expired:
                    raise RegistrationTimeoutError(
                        f"interchain account for {self._owner_address} not observed "
                        f"after registration tx {self._registration_tx}"
                    ) from None
                deadline.sleep(self._poll_interval)
                continue
            except OperationTimeoutError as exc:
                raise RegistrationTimeoutError(str(exc)) from exc
            log.info("ica_registered", address=address, owner=self._owner_address)
            return address

    def send_request_action(self, msg: dict[str, Any], deadline: Deadline) -> AckResult:
        ack = self._transport.send(
            self._cfg.key_name, self._cfg.connection_id, msg, deadline=deadline
        )
        if not ack.action_id:
            raise SendAckError(f"acknowledgment for tx {ack.tx_hash} carries no action id")
        return ack

    def send_approve_action(self, msg: dict[str, Any], deadline: Deadline) -> str:
        ack = self._transport.send(
            self._cfg.key_name, self._cfg.connection_id, msg, deadline=deadline
        )
        return ack.tx_hash
