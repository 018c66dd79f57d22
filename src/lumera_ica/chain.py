"""Runner for Cosmos node binaries (queries, broadcasts, key lookups)."""

from __future__ import annotations

import json
import subprocess
from dataclasses import dataclass
from typing import Any, Iterable, Sequence

import structlog

from lumera_ica.deadline import Deadline
from lumera_ica.errors import ChainCommandError, NotFoundError, OperationTimeoutError

log = structlog.get_logger(__name__)

DEFAULT_GAS_ADJUSTMENT = "1.5"
TX_POLL_INTERVAL = 1.0

_NOT_FOUND_MARKERS = (
    "not found",
    "does not exist",
    "no interchain account",
    "key not found",
)


def _looks_not_found(message: str) -> bool:
    lowered = message.lower()
    return any(marker in lowered for marker in _NOT_FOUND_MARKERS)


def _parse_json_output(raw: str, *, kind: str) -> dict[str, Any]:
    text = raw.strip()
    if not text:
        raise ChainCommandError(f"{kind}: empty output")
    try:
        payload = json.loads(text)
    except json.JSONDecodeError:
        # Some binaries print warnings ahead of the JSON body.
        start = text.find("{")
        if start < 0:
            raise ChainCommandError(f"{kind}: output is not JSON") from None
        try:
            payload = json.loads(text[start:])
        except json.JSONDecodeError as exc:
            raise ChainCommandError(f"{kind}: output is not JSON") from exc
    if not isinstance(payload, dict):
        raise ChainCommandError(f"{kind}: expected a JSON object")
    return payload


@dataclass(frozen=True)
class ChainCLI:
    binary: str
    node: str = ""
    chain_id: str = ""
    gas_prices: str = ""

    def run(
        self,
        args: Sequence[str],
        *,
        deadline: Deadline,
        kind: str,
        stdin: bytes | None = None,
    ) -> str:
        cmd = [self.binary, *args]
        timeout = deadline.check(kind)
        log.debug("chain_command", kind=kind, binary=self.binary, args=list(args))
        try:
            proc = subprocess.run(cmd, input=stdin, capture_output=True, timeout=timeout)
        except subprocess.TimeoutExpired as exc:
            raise OperationTimeoutError(f"{kind} timed out after {timeout:.0f}s") from exc
        except FileNotFoundError as exc:
            raise ChainCommandError(
                f"{kind}: binary not found: {self.binary}", command=cmd
            ) from exc

        stdout = (proc.stdout or b"").decode("utf-8", errors="replace")
        stderr = (proc.stderr or b"").decode("utf-8", errors="replace")
        if proc.returncode != 0:
            message = stderr.strip() or stdout.strip() or f"exit status {proc.returncode}"
            message = message.splitlines()[-1] if message else message
            if _looks_not_found(message):
                raise NotFoundError(f"{kind}: {message}")
            raise ChainCommandError(
                f"{kind} failed: {message}",
                command=cmd,
                returncode=proc.returncode,
                stderr=stderr,
            )
        return stdout

    def run_json(
        self,
        args: Sequence[str],
        *,
        deadline: Deadline,
        kind: str,
        stdin: bytes | None = None,
    ) -> dict[str, Any]:
        return _parse_json_output(
            self.run(args, deadline=deadline, kind=kind, stdin=stdin),
            kind=kind,
        )

    def query(self, *args: str, deadline: Deadline, kind: str) -> dict[str, Any]:
        return self.run_json(
            ["query", *args, "--node", self.node, "--output", "json"],
            deadline=deadline,
            kind=kind,
        )

    def broadcast(
        self,
        *args: str,
        key_name: str,
        keyring_flags: Sequence[str],
        deadline: Deadline,
        kind: str,
        stdin: bytes | None = None,
    ) -> dict[str, Any]:
        flags = [
            "--from",
            key_name,
            "--chain-id",
            self.chain_id,
            "--node",
            self.node,
            *keyring_flags,
            "--gas",
            "auto",
            "--gas-adjustment",
            DEFAULT_GAS_ADJUSTMENT,
            "--broadcast-mode",
            "sync",
            "--yes",
            "--output",
            "json",
        ]
        if self.gas_prices:
            flags.extend(["--gas-prices", self.gas_prices])
        return self.run_json(["tx", *args, *flags], deadline=deadline, kind=kind, stdin=stdin)

    def wait_for_tx(
        self,
        tx_hash: str,
        *,
        deadline: Deadline,
        interval: float = TX_POLL_INTERVAL,
    ) -> dict[str, Any]:
        """Poll until the transaction is included in a block."""
        while True:
            try:
                return self.query("tx", tx_hash, deadline=deadline, kind="query tx")
            except NotFoundError:
                deadline.check(f"waiting for tx {tx_hash}")
                deadline.sleep(interval)


def tx_code(tx: dict[str, Any]) -> int:
    try:
        return int(tx.get("code") or 0)
    except (TypeError, ValueError):
        return -1


def iter_events(tx: dict[str, Any]) -> Iterable[dict[str, Any]]:
    events = tx.get("events")
    if isinstance(events, list):
        yield from (event for event in events if isinstance(event, dict))
    for entry in tx.get("logs") or []:
        if isinstance(entry, dict):
            yield from (event for event in entry.get("events") or [] if isinstance(event, dict))


def event_attribute(tx: dict[str, Any], key: str, *, event_type: str | None = None) -> str | None:
    for event in iter_events(tx):
        if event_type is not None and event.get("type") != event_type:
            continue
        for attribute in event.get("attributes") or []:
            if isinstance(attribute, dict) and attribute.get("key") == key:
                value = attribute.get("value")
                if isinstance(value, str) and value:
                    return value
    return None
