"""Lumera ICA client public surface."""

from lumera_ica.addresses import ResolvedIdentity, decode_address, derive_address, resolve_identity
from lumera_ica.config import Config, ControllerChainConfig, HostChainConfig, load_config
from lumera_ica.deadline import Deadline
from lumera_ica.errors import (
    ActionStateMismatchError,
    AddressDerivationError,
    ChainCommandError,
    ConfigError,
    DownloadError,
    ICAClientError,
    KeyringError,
    NotFoundError,
    OperationTimeoutError,
    PreconditionError,
    RegistrationTimeoutError,
    SendAckError,
    UploadError,
)
from lumera_ica.ica import AckResult, DelegatedAccount, DelegatedAccountCoordinator, RegistrationState
from lumera_ica.keyring import KeyInfo, KeyringHandle, open_keyring
from lumera_ica.report import ActionStatusResult, WorkflowResult, parse_result, render_result
from lumera_ica.schemas import ActionRecord, ActionState, CascadeMetadata, UnknownMetadata
from lumera_ica.workflow import ActionWorkflow, BestEffort, open_workflow

__all__ = [
    "AckResult",
    "ActionRecord",
    "ActionState",
    "ActionStateMismatchError",
    "ActionStatusResult",
    "ActionWorkflow",
    "AddressDerivationError",
    "BestEffort",
    "CascadeMetadata",
    "ChainCommandError",
    "Config",
    "ConfigError",
    "ControllerChainConfig",
    "Deadline",
    "DelegatedAccount",
    "DelegatedAccountCoordinator",
    "DownloadError",
    "HostChainConfig",
    "ICAClientError",
    "KeyInfo",
    "KeyringError",
    "KeyringHandle",
    "NotFoundError",
    "OperationTimeoutError",
    "PreconditionError",
    "RegistrationState",
    "RegistrationTimeoutError",
    "ResolvedIdentity",
    "SendAckError",
    "UnknownMetadata",
    "UploadError",
    "WorkflowResult",
    "decode_address",
    "derive_address",
    "load_config",
    "open_keyring",
    "open_workflow",
    "parse_result",
    "render_result",
    "resolve_identity",
]
