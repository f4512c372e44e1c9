# src/storder/crypto/auth.py
from __future__ import annotations

"""Gateway request credential.

Proves control of an identity's secret key without sending it:

  seed      = secret_key[:32]
  signature = ed25519(seed).sign(address.encode())      # 64 bytes
  token     = base64("sub-<address>:0x<hex(signature)>")

The gateway expects it as `Authorization: Basic <token>`. Ed25519 signing is
deterministic, so the same key and address always give the same token. It is
rebuilt for every request rather than stored.
"""

import base64

from storder.crypto.sig import sign_ed25519_raw
from storder.models import Identity

_SIG_LEN = 64


def gateway_credential(identity: Identity) -> str:
    sk32 = bytes(identity.secret_key[:32])
    signature = sign_ed25519_raw(message=identity.address.encode("utf-8"), privkey=sk32)
    sig_hex = signature[:_SIG_LEN].hex()
    auth_str = f"sub-{identity.address}:0x{sig_hex}"
    return base64.b64encode(auth_str.encode("utf-8")).decode("ascii")


def gateway_auth_header(identity: Identity) -> str:
    return f"Basic {gateway_credential(identity)}"
