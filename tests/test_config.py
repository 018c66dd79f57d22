from __future__ import annotations

import json
from pathlib import Path

import pytest

from lumera_ica.config import load_config
from lumera_ica.errors import ConfigError

REQUIRED_FIELDS = (
    "lumera.chain_id",
    "lumera.grpc_endpoint",
    "lumera.rpc_endpoint",
    "lumera.key_name",
    "controller.chain_id",
    "controller.grpc_endpoint",
    "controller.rpc_endpoint",
    "controller.key_name",
    "controller.keyring_backend",
    "controller.account_hrp",
    "controller.connection_id",
)


def _write_config(tmp_path: Path, *, drop: tuple[str, ...] = (), **overrides: str) -> Path:
    tables = {
        "lumera": {
            "chain_id": "lumera-devnet-1",
            "grpc_endpoint": "localhost:9090",
            "rpc_endpoint": "tcp://localhost:26657",
            "key_name": "host-key",
        },
        "controller": {
            "chain_id": "osmo-devnet-1",
            "grpc_endpoint": "localhost:19090",
            "rpc_endpoint": "tcp://localhost:36657",
            "key_name": "owner",
            "keyring_backend": "test",
            "account_hrp": "osmo",
            "connection_id": "connection-0",
            "home": str(tmp_path / "home"),
        },
    }
    for dotted, value in overrides.items():
        table, field = dotted.split("__", 1)
        tables[table][field] = value
    for dotted in drop:
        table, field = dotted.split(".", 1)
        tables[table].pop(field, None)

    lines: list[str] = []
    for table, values in tables.items():
        lines.append(f"[{table}]")
        lines.extend(f"{key} = {json.dumps(value)}" for key, value in values.items())
        lines.append("")
    path = tmp_path / "config.toml"
    path.write_text("\n".join(lines), encoding="utf-8")
    return path


def test_valid_config_loads_with_defaults(tmp_path) -> None:
    config = load_config(_write_config(tmp_path))
    assert config.lumera.log_level == "info"
    assert config.lumera.account_hrp == "lumera"
    assert config.lumera.binary == "lumerad"
    assert config.lumera.storage_endpoint == ""
    assert config.controller.keyring_backend == "test"
    assert config.controller.key_type == "secp256k1"


@pytest.mark.parametrize("field", REQUIRED_FIELDS)
def test_missing_required_field_is_named(tmp_path, field) -> None:
    with pytest.raises(ConfigError, match=f"{field} is required"):
        load_config(_write_config(tmp_path, drop=(field,)))


def test_both_passphrase_sources_are_rejected(tmp_path) -> None:
    secret = tmp_path / "passphrase.txt"
    secret.write_text("hunter2\n", encoding="utf-8")
    path = _write_config(
        tmp_path,
        controller__keyring_passphrase_plain="hunter2",
        controller__keyring_passphrase_file=str(secret),
    )
    with pytest.raises(ConfigError, match="only one of"):
        load_config(path)


def test_passphrase_exclusivity_wins_over_later_checks(tmp_path) -> None:
    path = _write_config(
        tmp_path,
        controller__keyring_backend="file",
        controller__keyring_passphrase_plain="hunter2",
        controller__keyring_passphrase_file=str(tmp_path / "missing.txt"),
    )
    with pytest.raises(ConfigError, match="only one of"):
        load_config(path)


@pytest.mark.parametrize("level", ["debug", "info", "warn", "error"])
def test_log_levels_pass_through(tmp_path, level) -> None:
    config = load_config(_write_config(tmp_path, lumera__log_level=level))
    assert config.lumera.log_level == level


def test_warning_normalizes_to_warn(tmp_path) -> None:
    config = load_config(_write_config(tmp_path, lumera__log_level="WARNING"))
    assert config.lumera.log_level == "warn"


def test_unknown_log_level_fails(tmp_path) -> None:
    with pytest.raises(ConfigError, match="lumera.log_level"):
        load_config(_write_config(tmp_path, lumera__log_level="trace"))


def test_file_backend_requires_keyring_dir(tmp_path) -> None:
    with pytest.raises(ConfigError, match="keyring_dir is required for file backend"):
        load_config(_write_config(tmp_path, controller__keyring_backend="file"))


def test_test_backend_falls_back_to_home(tmp_path) -> None:
    config = load_config(_write_config(tmp_path, controller__keyring_backend="TEST"))
    assert config.controller.keyring_backend == "test"
    assert config.controller.keyring_dir == str(tmp_path / "home")


def test_unknown_backend_fails(tmp_path) -> None:
    with pytest.raises(ConfigError, match="keyring_backend must be one of"):
        load_config(_write_config(tmp_path, controller__keyring_backend="kwallet"))


def test_passphrase_file_is_read_eagerly(tmp_path) -> None:
    empty = tmp_path / "empty.txt"
    empty.write_text("  \n", encoding="utf-8")
    with pytest.raises(ConfigError, match="keyring_passphrase_file is empty"):
        load_config(_write_config(tmp_path, controller__keyring_passphrase_file=str(empty)))
    with pytest.raises(ConfigError, match="read controller.keyring_passphrase_file"):
        load_config(
            _write_config(tmp_path, controller__keyring_passphrase_file=str(tmp_path / "nope.txt"))
        )


def test_home_paths_are_expanded(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("HOME", str(tmp_path))
    (tmp_path / "pass.txt").write_text("hunter2", encoding="utf-8")
    config = load_config(
        _write_config(
            tmp_path,
            controller__keyring_backend="file",
            controller__keyring_dir="~/keys",
            controller__keyring_passphrase_file="~/pass.txt",
        )
    )
    assert config.controller.keyring_dir == str(tmp_path / "keys")
    assert config.controller.keyring_passphrase_file == str(tmp_path / "pass.txt")


def test_key_type_aliases_normalize(tmp_path) -> None:
    config = load_config(_write_config(tmp_path, controller__key_type="eth-secp256k1"))
    assert config.controller.key_type == "eth_secp256k1"
    with pytest.raises(ConfigError, match="lumera.key_type"):
        load_config(_write_config(tmp_path, lumera__key_type="ed25519"))


def test_missing_file_and_bad_toml_fail(tmp_path) -> None:
    with pytest.raises(ConfigError, match="decode config"):
        load_config(tmp_path / "absent.toml")
    broken = tmp_path / "broken.toml"
    broken.write_text("[lumera\nchain_id = ", encoding="utf-8")
    with pytest.raises(ConfigError, match="invalid TOML"):
        load_config(broken)
    with pytest.raises(ConfigError, match="config path is required"):
        load_config("  ")
