# src/storder/crypto/sig.py
from __future__ import annotations

import base64
from typing import Tuple

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat


def _private_key(privkey: bytes) -> Ed25519PrivateKey:
    pk_b = bytes(privkey)

    # 64-byte secret keys are seed || pubkey; the signing key is the seed.
    if len(pk_b) == 64:
        pk_b = pk_b[:32]

    if len(pk_b) != 32:
        raise ValueError("ed25519 privkey must be 32-byte seed (or 64-byte seed||pubkey)")

    return Ed25519PrivateKey.from_private_bytes(pk_b)


def generate_secret_key() -> bytes:
    """Return a fresh 64-byte secret key (seed || pubkey)."""
    sk = Ed25519PrivateKey.generate()
    return secret_key_from_seed(sk.private_bytes_raw())


def secret_key_from_seed(seed: bytes) -> bytes:
    if len(seed) != 32:
        raise ValueError("ed25519 seed must be 32 bytes")
    pub = Ed25519PrivateKey.from_private_bytes(seed).public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)
    return bytes(seed) + pub


def sdk_private_key(secret_key: bytes) -> str:
    """Secret key in the base64 form algosdk signers take (same seed || pubkey layout)."""
    if len(secret_key) != 64:
        raise ValueError("secret key must be 64 bytes")
    return base64.b64encode(bytes(secret_key)).decode("ascii")


def sign_ed25519_raw(*, message: bytes, privkey: bytes) -> bytes:
    return _private_key(privkey).sign(message)


def verify_ed25519_signature(*, message: bytes, sig: bytes, pubkey: bytes) -> bool:
    try:
        key = Ed25519PublicKey.from_public_bytes(bytes(pubkey))
        key.verify(bytes(sig), message)
        return True
    except (InvalidSignature, ValueError):
        return False


def split_secret_key(secret_key: bytes) -> Tuple[bytes, bytes]:
    """Return (seed, pubkey) for a 64-byte secret key."""
    if len(secret_key) != 64:
        raise ValueError("secret key must be 64 bytes")
    return bytes(secret_key[:32]), bytes(secret_key[32:])
