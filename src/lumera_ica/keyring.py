"""Controller keystore access.

The keystore itself lives behind the chain node binary (``keys show`` and
``keys export``); this module selects the keyring namespace, feeds the
configured passphrase to every backend prompt, checks that each configured
key has the declared algorithm, and signs application-level payloads.
"""

from __future__ import annotations

import base64
import hashlib
import io
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol, Sequence

import structlog
from Crypto.Hash import keccak
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import (
    Prehashed,
    decode_dss_signature,
    encode_dss_signature,
)

from lumera_ica.chain import ChainCLI
from lumera_ica.config import ControllerChainConfig, read_passphrase_file
from lumera_ica.deadline import Deadline
from lumera_ica.errors import ChainCommandError, ConfigError, KeyringError, NotFoundError

log = structlog.get_logger(__name__)

SECP256K1 = "secp256k1"
ETH_SECP256K1 = "eth_secp256k1"
DEFAULT_APP_NAME = "lumera"
PASSPHRASE_PROMPTS = 4

_SECP256K1_ORDER = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141


@dataclass(frozen=True)
class KeyInfo:
    name: str
    algorithm: str
    public_key: bytes


@dataclass(frozen=True)
class ExpectedKey:
    name: str
    algorithm: str
    field_name: str


class PassphraseReplay(io.RawIOBase):
    """Endless reader that repeats ``passphrase + "\\n"``.

    Backends prompt once per key or once per unlock, so the same line is
    served for as many prompts as they issue. Never call ``read()`` without
    a size.
    """

    def __init__(self, passphrase: str) -> None:
        super().__init__()
        self._data = f"{passphrase}\n".encode("utf-8")
        self._pos = 0

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:  # noqa: ANN001
        view = memoryview(buffer).cast("B")
        written = 0
        while written < len(view):
            if self._pos == len(self._data):
                self._pos = 0
            chunk = min(len(self._data) - self._pos, len(view) - written)
            view[written : written + chunk] = self._data[self._pos : self._pos + chunk]
            written += chunk
            self._pos += chunk
        return written

    def prompts(self, count: int) -> bytes:
        return self.read(len(self._data) * max(1, count))


class KeystoreBackend(Protocol):
    def show(self, name: str, *, deadline: Deadline) -> KeyInfo: ...

    def export_private_key(self, name: str, *, deadline: Deadline) -> bytes: ...

    def flags(self) -> list[str]: ...

    def prompt_input(self) -> bytes | None: ...


def algorithm_from_pubkey_type(type_url: str) -> str | None:
    if type_url.endswith("ethsecp256k1.PubKey"):
        return ETH_SECP256K1
    if type_url.endswith("secp256k1.PubKey"):
        return SECP256K1
    return None


def _parse_pubkey(raw: Any, name: str) -> tuple[str, bytes]:
    payload = raw
    if isinstance(raw, str):
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise KeyringError(f"key {name}: unsupported public key encoding") from exc
    if not isinstance(payload, dict):
        raise KeyringError(f"key {name}: missing public key")
    algorithm = algorithm_from_pubkey_type(str(payload.get("@type", "")))
    if algorithm is None:
        raise KeyringError(f"key {name}: unsupported key type {payload.get('@type')!r}")
    try:
        public_key = base64.b64decode(str(payload.get("key", "")), validate=True)
    except ValueError as exc:
        raise KeyringError(f"key {name}: public key is not valid base64") from exc
    if len(public_key) not in (33, 65):
        raise KeyringError(f"key {name}: unexpected public key length {len(public_key)}")
    return algorithm, public_key


class CLIKeystore:
    """Keystore backed by a node binary's ``keys`` subcommands."""

    def __init__(
        self,
        cli: ChainCLI,
        *,
        backend: str,
        directory: str,
        passphrase: PassphraseReplay | None = None,
    ) -> None:
        self._cli = cli
        self._backend = backend
        self._directory = directory
        self._passphrase = passphrase

    def flags(self) -> list[str]:
        return ["--keyring-backend", self._backend, "--keyring-dir", self._directory]

    def prompt_input(self) -> bytes | None:
        if self._passphrase is None:
            return None
        return self._passphrase.prompts(PASSPHRASE_PROMPTS)

    def show(self, name: str, *, deadline: Deadline) -> KeyInfo:
        try:
            payload = self._cli.run_json(
                ["keys", "show", name, "--output", "json", *self.flags()],
                deadline=deadline,
                kind="keys show",
                stdin=self.prompt_input(),
            )
        except NotFoundError as exc:
            raise KeyringError(f"key {name} not found in {self._backend} keyring") from exc
        except ChainCommandError as exc:
            raise KeyringError(f"open keyring: {exc}") from exc
        algorithm, public_key = _parse_pubkey(payload.get("pubkey"), name)
        return KeyInfo(name=name, algorithm=algorithm, public_key=public_key)

    def export_private_key(self, name: str, *, deadline: Deadline) -> bytes:
        stdin = b"y\n" + (self.prompt_input() or b"")
        try:
            raw = self._cli.run(
                ["keys", "export", name, "--unarmored-hex", "--unsafe", *self.flags()],
                deadline=deadline,
                kind="keys export",
                stdin=stdin,
            )
        except NotFoundError as exc:
            raise KeyringError(f"key {name} not found in {self._backend} keyring") from exc
        except ChainCommandError as exc:
            raise KeyringError(f"export key {name}: {exc}") from exc
        lines = [line.strip() for line in raw.splitlines() if line.strip()]
        try:
            private_key = bytes.fromhex(lines[-1]) if lines else b""
        except ValueError as exc:
            raise KeyringError(f"export key {name}: output is not hex") from exc
        if len(private_key) != 32:
            raise KeyringError(f"export key {name}: expected 32-byte private key")
        return private_key


def _digest(message: bytes, algorithm: str) -> bytes:
    if algorithm == ETH_SECP256K1:
        return keccak.new(data=message, digest_bits=256).digest()
    return hashlib.sha256(message).digest()


def sign_bytes(private_key: bytes, message: bytes, algorithm: str) -> bytes:
    """Return a 64-byte low-S ``r || s`` secp256k1 signature."""
    key = ec.derive_private_key(int.from_bytes(private_key, "big"), ec.SECP256K1())
    der = key.sign(_digest(message, algorithm), ec.ECDSA(Prehashed(hashes.SHA256())))
    r, s = decode_dss_signature(der)
    if s > _SECP256K1_ORDER // 2:
        s = _SECP256K1_ORDER - s
    return r.to_bytes(32, "big") + s.to_bytes(32, "big")


def verify_bytes(public_key: bytes, message: bytes, signature: bytes, algorithm: str) -> bool:
    if len(signature) != 64:
        return False
    try:
        key = ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP256K1(), public_key)
        der = encode_dss_signature(
            int.from_bytes(signature[:32], "big"),
            int.from_bytes(signature[32:], "big"),
        )
        key.verify(der, _digest(message, algorithm), ec.ECDSA(Prehashed(hashes.SHA256())))
    except (InvalidSignature, ValueError):
        return False
    return True


class KeyringHandle:
    """Read-only view of the controller keystore for one command invocation."""

    def __init__(
        self,
        backend: KeystoreBackend,
        *,
        app_name: str,
        backend_name: str,
        directory: str,
    ) -> None:
        self._backend = backend
        self._keys: dict[str, KeyInfo] = {}
        self.app_name = app_name
        self.backend_name = backend_name
        self.directory = directory

    def get_key(self, name: str, *, deadline: Deadline) -> KeyInfo:
        if name not in self._keys:
            self._keys[name] = self._backend.show(name, deadline=deadline)
        return self._keys[name]

    def sign(self, name: str, message: bytes, *, deadline: Deadline) -> bytes:
        info = self.get_key(name, deadline=deadline)
        private_key = self._backend.export_private_key(name, deadline=deadline)
        try:
            return sign_bytes(private_key, message, info.algorithm)
        except ValueError as exc:
            raise KeyringError(f"sign with key {name}: {exc}") from exc

    def cli_flags(self) -> list[str]:
        return self._backend.flags()

    def prompt_input(self) -> bytes | None:
        return self._backend.prompt_input()


def keyring_app_name(cfg: ControllerChainConfig) -> str:
    if cfg.binary:
        return Path(cfg.binary).name
    if cfg.chain_id:
        return cfg.chain_id
    return DEFAULT_APP_NAME


def resolve_passphrase(plain: str, file_path: str) -> str:
    """Pick the single configured passphrase source; empty means interactive."""
    plain = plain.strip()
    file_path = file_path.strip()
    if plain and file_path:
        raise ConfigError("only one of keyring passphrase plain/file may be set")
    if plain:
        return plain
    if not file_path:
        return ""
    return read_passphrase_file(file_path)


def keyring_directory(cfg: ControllerChainConfig) -> str:
    directory = cfg.keyring_dir.strip()
    if not directory and cfg.keyring_backend == "test":
        directory = cfg.home.strip()
    if not directory:
        directory = str(Path.home() / f".{keyring_app_name(cfg)}")
    return directory


def validate_key_types(
    keyring: KeyringHandle,
    expected: Sequence[ExpectedKey],
    *,
    deadline: Deadline,
) -> None:
    for item in expected:
        info = keyring.get_key(item.name, deadline=deadline)
        if info.algorithm != item.algorithm:
            raise KeyringError(
                f"key {item.name} uses {info.algorithm} but {item.field_name} "
                f"is {item.algorithm}"
            )


def open_keyring(
    cfg: ControllerChainConfig,
    *,
    binary: str,
    expected: Sequence[ExpectedKey],
    deadline: Deadline,
    backend: KeystoreBackend | None = None,
) -> KeyringHandle:
    """Open the controller keystore and check every expected key's algorithm."""
    app_name = keyring_app_name(cfg)
    directory = keyring_directory(cfg)
    if backend is None:
        passphrase = resolve_passphrase(cfg.keyring_passphrase_plain, cfg.keyring_passphrase_file)
        backend = CLIKeystore(
            ChainCLI(binary=binary),
            backend=cfg.keyring_backend,
            directory=directory,
            passphrase=PassphraseReplay(passphrase) if passphrase else None,
        )
    keyring = KeyringHandle(
        backend,
        app_name=app_name,
        backend_name=cfg.keyring_backend,
        directory=directory,
    )
    validate_key_types(keyring, expected, deadline=deadline)
    log.debug(
        "keyring_opened",
        app_name=app_name,
        backend=cfg.keyring_backend,
        directory=directory,
        keys=[item.name for item in expected],
    )
    return keyring
