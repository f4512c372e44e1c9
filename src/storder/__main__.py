# src/storder/__main__.py
from __future__ import annotations

"""Place one storage order from the command line.

Usage:
  python -m storder --network testnet --file README.md [--permanent]

Exit codes:
  0 ok, 1 other or internal error, 2 usage/config, 3 no funds, 4 upload,
  5 simulation, 6 submission
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional, Type

from storder.config import NETWORKS, OrderConfig, load_order_config
from storder.contract import StorageOrderContract
from storder.env import load_dotenv_if_present
from storder.errors import NoFundsError, OrderError, SimulationError, SubmissionError, UploadError
from storder.gateway.ipfs import IpfsGatewayPublisher
from storder.identity import KeystoreIdentityProvider
from storder.keystore import SqliteKeystore
from storder.ledger.client import HttpLedgerClient
from storder.order_logging import configure_structured_logging, log_event
from storder.orchestrator import Orchestrator

logger = logging.getLogger("storder.cli")

EXIT_CODES: Dict[Type[OrderError], int] = {
    NoFundsError: 3,
    UploadError: 4,
    SimulationError: 5,
    SubmissionError: 6,
}


def build_orchestrator(cfg: OrderConfig) -> Orchestrator:
    ledger = HttpLedgerClient(base_url=cfg.algod_url, token=cfg.algod_token, timeout_s=cfg.request_timeout_s)
    identity_provider = KeystoreIdentityProvider(
        keystore=SqliteKeystore(path=cfg.keystore_path),
        ledger=ledger,
        name=cfg.wallet_name,
    )
    publisher = IpfsGatewayPublisher(
        api_base=cfg.gateway_url,
        public_base=cfg.gateway_public_url,
        timeout_s=cfg.upload_timeout_s,
    )
    return Orchestrator(
        identity_provider=identity_provider,
        publisher=publisher,
        reader=ledger,
        writer=ledger,
        contract=StorageOrderContract(app_id=cfg.app_id),
        confirm_rounds=cfg.confirm_rounds,
    )


def _parse_args(argv: List[str]) -> argparse.Namespace:
    ap = argparse.ArgumentParser(prog="storder", description="Publish a file and place an on-chain storage order")
    ap.add_argument("--network", choices=sorted(NETWORKS), default=None)
    ap.add_argument("--file", dest="file_path", required=True)
    ap.add_argument("--name", dest="filename", default="", help="filename sent to the gateway (default: basename)")
    ap.add_argument("--permanent", dest="is_permanent", action="store_true", default=None)
    ap.add_argument("--config", dest="config_path", default=None)
    ap.add_argument("--wallet", dest="wallet_name", default=None)
    ap.add_argument("--keystore", dest="keystore_path", default=None)
    ap.add_argument("--algod-url", dest="algod_url", default=None)
    ap.add_argument("--gateway-url", dest="gateway_url", default=None)
    return ap.parse_args(argv)


def _exit_code(e: OrderError) -> int:
    for cls, code in EXIT_CODES.items():
        if isinstance(e, cls):
            return code
    return 1


def main(argv: List[str], *, orchestrator: Optional[Orchestrator] = None) -> int:
    load_dotenv_if_present()
    args = _parse_args(argv)

    try:
        cfg = load_order_config(
            network=args.network,
            config_path=args.config_path,
            overrides={
                "wallet_name": args.wallet_name,
                "keystore_path": args.keystore_path,
                "algod_url": args.algod_url,
                "gateway_url": args.gateway_url,
                "is_permanent": args.is_permanent,
            },
        )
    except (OSError, ValueError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2

    configure_structured_logging(cfg.log_level)

    path = Path(args.file_path)
    try:
        data = path.read_bytes()
    except OSError as e:
        print(f"ERROR: cannot read {path}: {e}", file=sys.stderr)
        return 2

    orch = orchestrator or build_orchestrator(cfg)
    log_event(logger, "order_start", network=cfg.network, app_id=cfg.app_id, file=str(path), size=len(data))

    try:
        run = orch.run(data, args.filename or path.name, is_permanent=cfg.is_permanent)
    except OrderError as e:
        failed = orch.last_run.to_json() if orch.last_run else {}
        print(json.dumps({"ok": False, "error": type(e).__name__, "code": e.code, "reason": e.reason, "run": failed}, indent=2))
        return _exit_code(e)
    except Exception as e:
        failed = orch.last_run.to_json() if orch.last_run else {}
        print(json.dumps({"ok": False, "error": type(e).__name__, "code": "internal", "reason": str(e), "run": failed}, indent=2))
        return 1

    print(json.dumps({"ok": True, "network": cfg.network, "app_id": cfg.app_id, "run": run.to_json()}, indent=2))
    return 0


def _console_main() -> int:
    return main(sys.argv[1:])


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
