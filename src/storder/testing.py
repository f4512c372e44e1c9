from __future__ import annotations

import hashlib

from algosdk.encoding import encode_address

from storder.crypto.sig import secret_key_from_seed, split_secret_key
from storder.models import Identity


def _sha256(b: bytes) -> bytes:
    return hashlib.sha256(b).digest()


def deterministic_secret_key(*, label: str) -> bytes:
    """Deterministically derive a 64-byte secret key from a stable label.

    TEST ONLY.
    """
    seed = _sha256(("storder-test-ed25519:" + (label or "")).encode("utf-8"))
    return secret_key_from_seed(seed)


def deterministic_address(*, label: str) -> str:
    _, pub = split_secret_key(deterministic_secret_key(label=label))
    return encode_address(pub)


def deterministic_identity(*, label: str, balance: int = 0) -> Identity:
    sk = deterministic_secret_key(label=label)
    return Identity(address=deterministic_address(label=label), secret_key=sk, balance=int(balance))
