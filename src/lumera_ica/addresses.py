"""Bech32 address derivation from keystore public keys.

Every call takes its prefix explicitly; no process-wide bech32 config exists.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass

from bech32 import bech32_decode, bech32_encode, convertbits
from Crypto.Hash import RIPEMD160, keccak
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from lumera_ica.config import Config
from lumera_ica.deadline import Deadline
from lumera_ica.errors import AddressDerivationError
from lumera_ica.keyring import ETH_SECP256K1, SECP256K1, KeyringHandle


@dataclass(frozen=True)
class ResolvedIdentity:
    controller_address: str
    host_address: str


def _load_point(public_key: bytes) -> ec.EllipticCurvePublicKey:
    try:
        return ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP256K1(), public_key)
    except ValueError as exc:
        raise AddressDerivationError("public key is not a valid secp256k1 point") from exc


def address_bytes(public_key: bytes, algorithm: str) -> bytes:
    point = _load_point(public_key)
    if algorithm == SECP256K1:
        compressed = point.public_bytes(Encoding.X962, PublicFormat.CompressedPoint)
        return RIPEMD160.new(hashlib.sha256(compressed).digest()).digest()
    if algorithm == ETH_SECP256K1:
        uncompressed = point.public_bytes(Encoding.X962, PublicFormat.UncompressedPoint)
        return keccak.new(data=uncompressed[1:], digest_bits=256).digest()[-20:]
    raise AddressDerivationError(f"unsupported key algorithm: {algorithm}")


def encode_address(prefix: str, data: bytes) -> str:
    if not prefix or prefix != prefix.lower() or not prefix.isascii():
        raise AddressDerivationError(f"invalid bech32 prefix: {prefix!r}")
    words = convertbits(data, 8, 5)
    if words is None:
        raise AddressDerivationError("cannot convert address bytes to bech32 words")
    address = bech32_encode(prefix, words)
    if not address:
        raise AddressDerivationError(f"cannot encode address with prefix {prefix!r}")
    return address


def decode_address(address: str) -> tuple[str, bytes]:
    prefix, words = bech32_decode(address)
    if prefix is None or words is None:
        raise AddressDerivationError(f"invalid bech32 address: {address!r}")
    data = convertbits(words, 5, 8, False)
    if data is None:
        raise AddressDerivationError(f"invalid bech32 payload: {address!r}")
    return prefix, bytes(data)


def derive_address(
    keyring: KeyringHandle,
    key_name: str,
    prefix: str,
    *,
    deadline: Deadline,
) -> str:
    info = keyring.get_key(key_name, deadline=deadline)
    return encode_address(prefix, address_bytes(info.public_key, info.algorithm))


def resolve_identity(keyring: KeyringHandle, config: Config, *, deadline: Deadline) -> ResolvedIdentity:
    """Derive the controller owner and host identities from the configured keys."""
    return ResolvedIdentity(
        controller_address=derive_address(
            keyring,
            config.controller.key_name,
            config.controller.account_hrp,
            deadline=deadline,
        ),
        host_address=derive_address(
            keyring,
            config.lumera.key_name,
            config.lumera.account_hrp,
            deadline=deadline,
        ),
    )
