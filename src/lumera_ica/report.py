"""Command result records and their JSON rendering."""

from __future__ import annotations

import base64
import json
from typing import Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict

from lumera_ica.schemas import ActionRecord

STATUS_OK = "ok"

ResultT = TypeVar("ResultT", bound=BaseModel)


class WorkflowResult(BaseModel):
    model_config = ConfigDict(extra="forbid")

    status: str = STATUS_OK
    action_id: Optional[str] = None
    tx_hash: Optional[str] = None
    task_id: Optional[str] = None
    ica_address: Optional[str] = None
    ica_owner_address: Optional[str] = None
    file: Optional[str] = None
    output_path: Optional[str] = None
    file_name: Optional[str] = None
    is_public: Optional[bool] = None


class ActionStatusResult(BaseModel):
    model_config = ConfigDict(extra="forbid")

    status: str = STATUS_OK
    action_id: str
    state: str
    type: str
    creator: str
    price: str
    block_height: int
    expires_at: int
    is_public: Optional[bool] = None
    app_pubkey: Optional[str] = None

    @classmethod
    def from_action(cls, action: ActionRecord) -> "ActionStatusResult":
        return cls(
            action_id=action.action_id,
            state=action.state.value,
            type=action.action_type,
            creator=action.creator,
            price=action.price,
            block_height=action.block_height,
            expires_at=action.expiration_time,
            is_public=action.is_public,
            app_pubkey=base64.b64encode(action.app_pubkey).decode("ascii") if action.app_pubkey else None,
        )


def render_result(result: BaseModel) -> str:
    """Deterministic JSON; fields a flow did not produce are left out."""
    return json.dumps(result.model_dump(exclude_none=True), indent=2, sort_keys=True)


def parse_result(text: str, model: Type[ResultT]) -> ResultT:
    return model.model_validate_json(text)
