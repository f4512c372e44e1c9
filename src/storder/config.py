# src/storder/config.py
from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.parse import urlparse

Json = Dict[str, Any]


def _as_int(v: Any, default: int) -> int:
    try:
        return int(v)
    except (TypeError, ValueError):
        return int(default)


def _as_float(v: Any, default: float) -> float:
    try:
        return float(v)
    except (TypeError, ValueError):
        return float(default)


def _as_str(v: Any, default: str) -> str:
    if v is None:
        return str(default)
    s = str(v)
    return s if s.strip() else str(default)


def _as_bool(v: Any, default: bool) -> bool:
    if v is None:
        return bool(default)
    if isinstance(v, bool):
        return v
    s = str(v).strip().lower()
    if s in {"1", "true", "yes", "y", "on"}:
        return True
    if s in {"0", "false", "no", "n", "off"}:
        return False
    return bool(default)


@dataclass(frozen=True)
class NetworkPreset:
    app_id: int
    algod_url: str


# Each environment is bound to a fixed storage-order contract.
NETWORKS: Dict[str, NetworkPreset] = {
    "testnet": NetworkPreset(app_id=507867511, algod_url="https://testnet-api.algonode.cloud"),
    "mainnet": NetworkPreset(app_id=1275319623, algod_url="https://mainnet-api.algonode.cloud"),
}

DEFAULT_GATEWAY_URL = "https://gw-seattle.crustcloud.io:443"


@dataclass(frozen=True)
class OrderConfig:
    network: str  # "testnet" | "mainnet"
    app_id: int

    algod_url: str
    algod_token: str

    # Upload endpoint and the read gateway used for reporting links.
    gateway_url: str
    gateway_public_url: str

    keystore_path: str
    wallet_name: str

    request_timeout_s: float
    upload_timeout_s: float
    confirm_rounds: int

    is_permanent: bool

    log_level: str


def validate_order_config(cfg: OrderConfig) -> None:
    """Fail-fast validation for operator config."""

    if cfg.network not in NETWORKS:
        raise ValueError(f"network must be one of {sorted(NETWORKS)}; got: {cfg.network!r}")

    if int(cfg.app_id) <= 0:
        raise ValueError(f"app_id must be > 0; got: {cfg.app_id}")

    for name, url in (
        ("algod_url", cfg.algod_url),
        ("gateway_url", cfg.gateway_url),
        ("gateway_public_url", cfg.gateway_public_url),
    ):
        if not isinstance(url, str) or not url.strip():
            raise ValueError(f"{name} must be a non-empty string")
        scheme = (urlparse(url).scheme or "").lower()
        if scheme not in {"http", "https"}:
            raise ValueError(f"{name} must be an http(s) URL; got: {url!r}")

    if not cfg.keystore_path.strip():
        raise ValueError("keystore_path must be a non-empty string")
    if not cfg.wallet_name.strip():
        raise ValueError("wallet_name must be a non-empty string")

    if float(cfg.request_timeout_s) <= 0 or float(cfg.upload_timeout_s) <= 0:
        raise ValueError("timeouts must be > 0")

    if int(cfg.confirm_rounds) <= 0:
        raise ValueError(f"confirm_rounds must be > 0; got: {cfg.confirm_rounds}")


def default_order_config(network: str = "testnet") -> OrderConfig:
    preset = NETWORKS.get(network)
    if preset is None:
        raise ValueError(f"network must be one of {sorted(NETWORKS)}; got: {network!r}")

    return OrderConfig(
        network=network,
        app_id=preset.app_id,
        algod_url=preset.algod_url,
        algod_token="",
        gateway_url=DEFAULT_GATEWAY_URL,
        gateway_public_url=DEFAULT_GATEWAY_URL,
        keystore_path="./data/keystore.db",
        wallet_name="uploader",
        request_timeout_s=30.0,
        upload_timeout_s=120.0,
        confirm_rounds=5,
        is_permanent=False,
        log_level="INFO",
    )


def _merge(base: OrderConfig, raw: Json) -> OrderConfig:
    return OrderConfig(
        network=base.network,
        app_id=_as_int(raw.get("app_id"), base.app_id),
        algod_url=_as_str(raw.get("algod_url"), base.algod_url).rstrip("/"),
        algod_token=str(raw.get("algod_token") if raw.get("algod_token") is not None else base.algod_token),
        gateway_url=_as_str(raw.get("gateway_url"), base.gateway_url).rstrip("/"),
        gateway_public_url=_as_str(raw.get("gateway_public_url"), base.gateway_public_url).rstrip("/"),
        keystore_path=_as_str(raw.get("keystore_path"), base.keystore_path),
        wallet_name=_as_str(raw.get("wallet_name"), base.wallet_name),
        request_timeout_s=_as_float(raw.get("request_timeout_s"), base.request_timeout_s),
        upload_timeout_s=_as_float(raw.get("upload_timeout_s"), base.upload_timeout_s),
        confirm_rounds=_as_int(raw.get("confirm_rounds"), base.confirm_rounds),
        is_permanent=_as_bool(raw.get("is_permanent"), base.is_permanent),
        log_level=_as_str(raw.get("log_level"), base.log_level).upper(),
    )


def read_config_file(path: str) -> Json:
    raw = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ValueError("order config must be a JSON object")
    return raw


_ENV_KEYS = {
    "app_id": "STORDER_APP_ID",
    "algod_url": "STORDER_ALGOD_URL",
    "algod_token": "STORDER_ALGOD_TOKEN",
    "gateway_url": "STORDER_GATEWAY_URL",
    "gateway_public_url": "STORDER_GATEWAY_PUBLIC_URL",
    "keystore_path": "STORDER_KEYSTORE_PATH",
    "wallet_name": "STORDER_WALLET_NAME",
    "request_timeout_s": "STORDER_REQUEST_TIMEOUT_S",
    "upload_timeout_s": "STORDER_UPLOAD_TIMEOUT_S",
    "confirm_rounds": "STORDER_CONFIRM_ROUNDS",
    "is_permanent": "STORDER_PERMANENT",
    "log_level": "STORDER_LOG_LEVEL",
}


def _env_overrides() -> Json:
    out: Json = {}
    for key, env_name in _ENV_KEYS.items():
        v = os.environ.get(env_name)
        if v is not None:
            out[key] = v
    return out


def load_order_config(
    *,
    network: Optional[str] = None,
    config_path: Optional[str] = None,
    overrides: Optional[Json] = None,
) -> OrderConfig:
    """Build the effective config.

    Precedence (lowest first): network preset, JSON file, STORDER_* env, overrides.
    """
    file_raw: Json = {}
    p = config_path or os.environ.get("STORDER_CONFIG_PATH")
    if p:
        file_raw = read_config_file(p)

    net = _as_str(network or os.environ.get("STORDER_NETWORK") or file_raw.get("network"), "testnet").strip().lower()
    cfg = default_order_config(net)

    cfg = _merge(cfg, file_raw)
    cfg = _merge(cfg, _env_overrides())
    if overrides:
        cfg = _merge(cfg, {k: v for k, v in overrides.items() if v is not None})

    validate_order_config(cfg)
    return cfg

