"""Command-line interface for lumera-ica-client."""

from __future__ import annotations

import argparse
import re
import sys
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as pkg_version
from typing import Sequence

from pydantic import BaseModel

from lumera_ica.config import DEFAULT_CONFIG_PATH, load_config
from lumera_ica.deadline import Deadline, resolve_command_timeout
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
from lumera_ica.logs import configure_logging
from lumera_ica.report import render_result
from lumera_ica.workflow import ActionWorkflow, open_workflow

EXIT_SUCCESS = 0
EXIT_FAILURE = 1

_SENSITIVE_FIELDS = (
    "keyring_passphrase_plain",
    "passphrase",
    "signature_b64",
    "private_key",
    "authorization",
)

_ERROR_PREFIXES: tuple[tuple[type[ICAClientError], str], ...] = (
    (ConfigError, "config error"),
    (KeyringError, "keyring error"),
    (AddressDerivationError, "address error"),
    (PreconditionError, "precondition error"),
    (RegistrationTimeoutError, "registration timeout error"),
    (OperationTimeoutError, "timeout error"),
    (SendAckError, "send error"),
    (ActionStateMismatchError, "state error"),
    (UploadError, "upload error"),
    (DownloadError, "download error"),
    (NotFoundError, "not found error"),
    (ChainCommandError, "chain error"),
)


def _client_version() -> str:
    try:
        return pkg_version("lumera-ica-client")
    except PackageNotFoundError:
        return "0.0.0+local"


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="lumera-ica-client")
    parser.add_argument(
        "--version",
        action="version",
        version=f"lumera-ica-client {_client_version()}",
    )
    parser.add_argument(
        "--config",
        default=DEFAULT_CONFIG_PATH,
        help=f"Path to config TOML (default: {DEFAULT_CONFIG_PATH})",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Command deadline in seconds (default: LUMERA_ICA_TIMEOUT or 600)",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    upload = sub.add_parser("upload", help="Register a storage action and upload file bytes")
    upload.add_argument("file_arg", nargs="?", metavar="FILE", help="File to upload")
    upload.add_argument("--file", dest="file_flag", default=None, help="File to upload")
    upload.add_argument("--public", action="store_true", help="Mark the stored file public")
    upload.add_argument(
        "--action-id",
        default=None,
        help="Upload into an existing pending action instead of requesting a new one",
    )

    download = sub.add_parser("download", help="Download stored bytes for an action")
    download.add_argument("action_id_arg", nargs="?", metavar="ACTION_ID")
    download.add_argument("--action-id", dest="action_id_flag", default=None)
    download.add_argument("--out", default=".", help="Output directory (default: .)")

    action = sub.add_parser("action", help="Query or approve host-chain actions")
    action_sub = action.add_subparsers(dest="action_command", required=True)

    status = action_sub.add_parser("status", help="Show an action record")
    status.add_argument("action_id_arg", nargs="?", metavar="ACTION_ID")
    status.add_argument("--action-id", dest="action_id_flag", default=None)

    approve = action_sub.add_parser("approve", help="Approve an action through the delegated account")
    approve.add_argument("action_id_arg", nargs="?", metavar="ACTION_ID")
    approve.add_argument("--action-id", dest="action_id_flag", default=None)
    approve.add_argument(
        "--ica-address",
        default=None,
        help="Delegated account address (default: query it from the controller chain)",
    )
    return parser


def _resolve_optional_arg(flag_value: str | None, positional: str | None, name: str) -> str:
    """Take a value from either the flag or the positional argument, not both."""
    flag_value = (flag_value or "").strip()
    positional = (positional or "").strip()
    if flag_value and positional:
        raise ValueError(f"provide {name} either as an argument or with --{name}, not both")
    value = flag_value or positional
    if not value:
        raise ValueError(f"{name} is required")
    return value


def _sanitize_error_text(value: str) -> str:
    redacted = value
    for field in _SENSITIVE_FIELDS:
        redacted = re.sub(
            rf"(?i)({field}\s*[=:]\s*)([^,\s]+)",
            r"\1[REDACTED]",
            redacted,
        )
    return " ".join(redacted.split())


def _print_error(stderr, prefix: str, message: str, *, code: int = EXIT_FAILURE) -> int:
    print(f"{prefix}: {_sanitize_error_text(message)}", file=stderr)
    return code


def _print_client_error(stderr, exc: ICAClientError) -> int:
    for error_type, prefix in _ERROR_PREFIXES:
        if isinstance(exc, error_type):
            return _print_error(stderr, prefix, str(exc))
    return _print_error(stderr, "error", str(exc))


def _command_target(args: argparse.Namespace) -> str:
    if args.command == "upload":
        return _resolve_optional_arg(args.file_flag, args.file_arg, "file")
    return _resolve_optional_arg(args.action_id_flag, args.action_id_arg, "action-id")


def _dispatch(args: argparse.Namespace, workflow: ActionWorkflow, target: str) -> BaseModel:
    if args.command == "upload":
        return workflow.upload(target, public=args.public, action_id=args.action_id)
    if args.command == "download":
        return workflow.download(target, args.out)
    if args.action_command == "approve":
        return workflow.approve(target, ica_address=args.ica_address)
    return workflow.status(target)


def main(argv: Sequence[str] | None = None, *, stdout=sys.stdout, stderr=sys.stderr) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    try:
        target = _command_target(args)
    except ValueError as exc:
        return _print_error(stderr, "usage error", str(exc))

    try:
        timeout = resolve_command_timeout(args.timeout)
        config = load_config(args.config)
    except ConfigError as exc:
        return _print_error(stderr, "config error", str(exc))

    configure_logging(config.lumera.log_level, stream=stderr)
    deadline = Deadline.after(timeout)

    try:
        with open_workflow(config, deadline) as workflow:
            result = _dispatch(args, workflow, target)
    except ICAClientError as exc:
        return _print_client_error(stderr, exc)
    except ValueError as exc:
        return _print_error(stderr, "input error", str(exc))
    except OSError as exc:
        return _print_error(stderr, "io error", str(exc))

    print(render_result(result), file=stdout)
    return EXIT_SUCCESS


if __name__ == "__main__":
    sys.exit(main())
