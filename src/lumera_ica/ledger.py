"""Read-only queries against the host ledger's action module."""

from __future__ import annotations

from dataclasses import dataclass

from pydantic import ValidationError

from lumera_ica.chain import ChainCLI
from lumera_ica.config import HostChainConfig
from lumera_ica.deadline import Deadline
from lumera_ica.errors import ChainCommandError, NotFoundError
from lumera_ica.messages import PRICE_DENOM
from lumera_ica.schemas import ActionRecord


@dataclass(frozen=True)
class HostLedger:
    cli: ChainCLI

    @classmethod
    def from_config(cls, cfg: HostChainConfig) -> "HostLedger":
        return cls(ChainCLI(binary=cfg.binary, node=cfg.rpc_endpoint, chain_id=cfg.chain_id))

    def get_action(self, action_id: str, *, deadline: Deadline) -> ActionRecord:
        if not action_id.strip():
            raise ValueError("action_id is required")
        payload = self.cli.query(
            "action",
            "get-action",
            action_id,
            deadline=deadline,
            kind="query action",
        )
        action = payload.get("action")
        if not isinstance(action, dict) or not action:
            raise NotFoundError(f"action {action_id} not found")
        if not action.get("actionID") and not action.get("action_id"):
            action = {**action, "actionID": action_id}
        try:
            return ActionRecord.model_validate(action)
        except ValidationError as exc:
            raise ChainCommandError(
                f"query action: malformed record for {action_id}: {exc.error_count()} invalid field(s)"
            ) from exc

    def get_action_fee(self, size_kbs: int, *, deadline: Deadline) -> str:
        """Return the fee for storing ``size_kbs`` kilobytes as a coin string."""
        payload = self.cli.query(
            "action",
            "get-action-fee",
            str(int(size_kbs)),
            deadline=deadline,
            kind="query action fee",
        )
        amount = str(payload.get("amount") or "").strip()
        if not amount.isdigit():
            raise ChainCommandError(f"query action fee: unexpected amount {amount!r}")
        return f"{amount}{PRICE_DENOM}"
