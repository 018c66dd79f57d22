"""Client error types."""

from __future__ import annotations


class ICAClientError(RuntimeError):
    """Base client error."""


class ConfigError(ICAClientError):
    """Configuration is missing, malformed or contradictory."""


class KeyringError(ICAClientError):
    """Keystore could not be opened or a key is missing or mismatched."""


class AddressDerivationError(ICAClientError):
    """A bech32 address could not be derived."""


class NotFoundError(ICAClientError):
    """Queried action, account, connection or client does not exist."""


class ChainCommandError(ICAClientError):
    """A chain node binary exited with an error."""

    def __init__(
        self,
        message: str,
        *,
        command: list[str] | None = None,
        returncode: int | None = None,
        stderr: str | None = None,
    ) -> None:
        super().__init__(message)
        self.command = command or []
        self.returncode = returncode
        self.stderr = stderr


class PreconditionError(ICAClientError):
    """Controller-side IBC state does not allow account registration."""


class OperationTimeoutError(ICAClientError):
    """The command deadline elapsed before an operation completed."""


class RegistrationTimeoutError(OperationTimeoutError):
    """Interchain account never became observable before the deadline."""


class SendAckError(ICAClientError):
    """Broadcast was rejected or the acknowledgment carries a host-side failure."""


class ActionStateMismatchError(ICAClientError):
    """Action is not in the state required by the requested operation."""

    def __init__(self, action_id: str, *, actual: str, expected: str) -> None:
        super().__init__(f"action {action_id} state is {actual}; expected {expected}")
        self.action_id = action_id
        self.actual = actual
        self.expected = expected


class UploadError(ICAClientError):
    """Storage mesh rejected or failed an upload."""


class DownloadError(ICAClientError):
    """Storage mesh rejected or failed a download."""
