from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Ensure local "src/" takes precedence over any globally-installed "storder" package.
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

src_str = str(SRC)
if src_str not in sys.path:
    sys.path.insert(0, src_str)


_STORDER_ENV = (
    "STORDER_NETWORK",
    "STORDER_CONFIG_PATH",
    "STORDER_APP_ID",
    "STORDER_ALGOD_URL",
    "STORDER_ALGOD_TOKEN",
    "STORDER_GATEWAY_URL",
    "STORDER_GATEWAY_PUBLIC_URL",
    "STORDER_KEYSTORE_PATH",
    "STORDER_WALLET_NAME",
    "STORDER_REQUEST_TIMEOUT_S",
    "STORDER_UPLOAD_TIMEOUT_S",
    "STORDER_CONFIRM_ROUNDS",
    "STORDER_PERMANENT",
    "STORDER_LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def _isolated_storder_env(monkeypatch: pytest.MonkeyPatch) -> None:
    # An operator's shell (or .env) must not leak into config-sensitive tests.
    for name in _STORDER_ENV:
        monkeypatch.delenv(name, raising=False)
