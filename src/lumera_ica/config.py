"""Two-chain configuration for the ICA client."""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any

from lumera_ica.errors import ConfigError

DEFAULT_CONFIG_PATH = "config.toml"
DEFAULT_HOST_HRP = "lumera"
DEFAULT_HOST_BINARY = "lumerad"

LOG_LEVELS = ("debug", "info", "warn", "error")
KEYRING_BACKENDS = ("os", "file", "test")
KEY_TYPES = ("secp256k1", "eth_secp256k1")

_LOG_LEVEL_ALIASES = {"warning": "warn"}
_KEY_TYPE_ALIASES = {"ethsecp256k1": "eth_secp256k1", "eth-secp256k1": "eth_secp256k1"}


@dataclass(frozen=True)
class HostChainConfig:
    chain_id: str = ""
    grpc_endpoint: str = ""
    rpc_endpoint: str = ""
    log_level: str = "info"
    key_name: str = ""
    key_type: str = "secp256k1"
    account_hrp: str = DEFAULT_HOST_HRP
    binary: str = DEFAULT_HOST_BINARY
    storage_endpoint: str = ""


@dataclass(frozen=True)
class ControllerChainConfig:
    chain_id: str = ""
    grpc_endpoint: str = ""
    rpc_endpoint: str = ""
    binary: str = ""
    home: str = ""
    key_name: str = ""
    key_type: str = "secp256k1"
    keyring_backend: str = ""
    keyring_dir: str = ""
    keyring_passphrase_plain: str = ""
    keyring_passphrase_file: str = ""
    gas_prices: str = ""
    account_hrp: str = ""
    connection_id: str = ""
    counterparty_connection_id: str = ""


@dataclass(frozen=True)
class Config:
    lumera: HostChainConfig
    controller: ControllerChainConfig


def _load_toml(path: Path) -> dict[str, Any]:
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"decode config: cannot read {path}: {exc}") from exc

    try:  # Python 3.11+
        import tomllib  # type: ignore[attr-defined]
        try:
            return tomllib.loads(raw)
        except tomllib.TOMLDecodeError as exc:
            raise ConfigError(f"decode config: invalid TOML in {path}: {exc}") from exc
    except ModuleNotFoundError:
        try:
            import tomli
        except ModuleNotFoundError as exc:
            raise ConfigError("toml parser unavailable; install tomli for Python < 3.11") from exc
        try:
            return tomli.loads(raw)
        except tomli.TOMLDecodeError as exc:
            raise ConfigError(f"decode config: invalid TOML in {path}: {exc}") from exc


def _section(parsed: dict[str, Any], name: str) -> dict[str, Any]:
    section = parsed.get(name, {})
    if not isinstance(section, dict):
        raise ConfigError(f"[{name}] must be a table")
    return section


def _string(source: dict[str, Any], section: str, field_name: str, default: str = "") -> str:
    value = source.get(field_name, default)
    if value is None:
        return default
    if not isinstance(value, str):
        raise ConfigError(f"{section}.{field_name} must be a string")
    return value.strip()


def expand_home(value: str) -> str:
    """Resolve a leading ``~`` into the user home directory."""
    if not value:
        return value
    if value == "~":
        return str(Path.home())
    if value.startswith("~/") or value.startswith("~\\"):
        return str(Path.home() / value[2:])
    return value


def normalize_log_level(value: str) -> str:
    lowered = value.strip().lower()
    if not lowered:
        return "info"
    lowered = _LOG_LEVEL_ALIASES.get(lowered, lowered)
    if lowered not in LOG_LEVELS:
        raise ConfigError("lumera.log_level must be one of: debug, info, warn, error")
    return lowered


def normalize_key_type(value: str, field_name: str) -> str:
    lowered = value.strip().lower()
    if not lowered:
        return "secp256k1"
    lowered = _KEY_TYPE_ALIASES.get(lowered, lowered)
    if lowered not in KEY_TYPES:
        raise ConfigError(f"{field_name} must be one of: secp256k1, eth_secp256k1")
    return lowered


def _require(value: str, field_name: str) -> None:
    if not value.strip():
        raise ConfigError(f"{field_name} is required")


def _parse_host(source: dict[str, Any]) -> HostChainConfig:
    return HostChainConfig(
        chain_id=_string(source, "lumera", "chain_id"),
        grpc_endpoint=_string(source, "lumera", "grpc_endpoint"),
        rpc_endpoint=_string(source, "lumera", "rpc_endpoint"),
        log_level=_string(source, "lumera", "log_level"),
        key_name=_string(source, "lumera", "key_name"),
        key_type=_string(source, "lumera", "key_type"),
        account_hrp=_string(source, "lumera", "account_hrp", DEFAULT_HOST_HRP) or DEFAULT_HOST_HRP,
        binary=_string(source, "lumera", "binary", DEFAULT_HOST_BINARY) or DEFAULT_HOST_BINARY,
        storage_endpoint=_string(source, "lumera", "storage_endpoint"),
    )


def _parse_controller(source: dict[str, Any]) -> ControllerChainConfig:
    fields = {
        name: _string(source, "controller", name)
        for name in ControllerChainConfig.__dataclass_fields__
    }
    return ControllerChainConfig(**fields)


def expand_paths(config: Config) -> Config:
    controller = config.controller
    return replace(
        config,
        controller=replace(
            controller,
            home=expand_home(controller.home),
            keyring_dir=expand_home(controller.keyring_dir),
            keyring_passphrase_file=expand_home(controller.keyring_passphrase_file),
        ),
    )


def validate_config(config: Config) -> Config:
    """Check required fields and consistency, returning the normalized config."""
    host = config.lumera
    controller = config.controller

    host = replace(host, log_level=normalize_log_level(host.log_level))
    _require(host.chain_id, "lumera.chain_id")
    _require(host.grpc_endpoint, "lumera.grpc_endpoint")
    _require(host.rpc_endpoint, "lumera.rpc_endpoint")
    _require(host.key_name, "lumera.key_name")
    host = replace(host, key_type=normalize_key_type(host.key_type, "lumera.key_type"))

    _require(controller.chain_id, "controller.chain_id")
    _require(controller.grpc_endpoint, "controller.grpc_endpoint")
    _require(controller.rpc_endpoint, "controller.rpc_endpoint")
    _require(controller.key_name, "controller.key_name")
    _require(controller.keyring_backend, "controller.keyring_backend")
    _require(controller.account_hrp, "controller.account_hrp")
    _require(controller.connection_id, "controller.connection_id")
    controller = replace(
        controller,
        key_type=normalize_key_type(controller.key_type, "controller.key_type"),
    )

    if controller.keyring_passphrase_plain and controller.keyring_passphrase_file:
        raise ConfigError(
            "only one of controller.keyring_passphrase_plain or "
            "controller.keyring_passphrase_file may be set"
        )

    backend = controller.keyring_backend.strip().lower()
    if backend not in KEYRING_BACKENDS:
        raise ConfigError("controller.keyring_backend must be one of: os, file, test")
    controller = replace(controller, keyring_backend=backend)

    if backend == "file" and not controller.keyring_dir:
        raise ConfigError("controller.keyring_dir is required for file backend")
    if backend == "test" and not controller.keyring_dir and controller.home:
        controller = replace(controller, keyring_dir=controller.home)

    if controller.keyring_passphrase_file:
        read_passphrase_file(controller.keyring_passphrase_file)

    return Config(lumera=host, controller=controller)


def read_passphrase_file(path: str) -> str:
    try:
        data = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"read controller.keyring_passphrase_file: {exc}") from exc
    passphrase = data.strip()
    if not passphrase:
        raise ConfigError("controller.keyring_passphrase_file is empty")
    return passphrase


def load_config(path: str | os.PathLike[str] = DEFAULT_CONFIG_PATH) -> Config:
    """Read the TOML config, expand ``~`` paths and validate the result."""
    raw_path = str(path).strip()
    if not raw_path:
        raise ConfigError("config path is required")
    parsed = _load_toml(Path(raw_path))
    config = Config(
        lumera=_parse_host(_section(parsed, "lumera")),
        controller=_parse_controller(_section(parsed, "controller")),
    )
    return validate_config(expand_paths(config))
