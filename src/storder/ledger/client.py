# src/storder/ledger/client.py
from __future__ import annotations

import logging
import urllib.error
from typing import Any, Callable, Dict, List, Optional, Type, TypeVar

from algosdk import transaction
from algosdk.error import (
    AlgodHTTPError,
    AlgodResponseError,
    ConfirmationTimeoutError,
    TransactionRejectedError,
)
from algosdk.transaction import GenericSignedTransaction, SuggestedParams
from algosdk.v2client.algod import AlgodClient
from algosdk.v2client.models import SimulateRequest
from pydantic import BaseModel, ValidationError

from storder.errors import LedgerError
from storder.ledger.schemas import AccountResponse, SimulateResponse
from storder.order_logging import log_event

Json = Dict[str, Any]
M = TypeVar("M", bound=BaseModel)
T = TypeVar("T")

logger = logging.getLogger("storder.ledger")


class HttpLedgerClient:
    """Ledger node client over algosdk's AlgodClient.

    Signed groups and simulate requests go out as msgpack; answers come back
    as JSON. One instance per run, constructed with its own endpoint, token
    and timeout. Every failure surfaces as LedgerError(code, reason, details):
      - http_<status>          node answered with a non-2xx status
      - unreachable            connection / DNS / timeout failure
      - bad_response           body was not JSON or missed required fields
      - pool_error             node dropped the group from its pool
      - confirmation_timeout   not confirmed within max_rounds
    """

    def __init__(
        self,
        *,
        base_url: str,
        token: str = "",
        timeout_s: float = 30.0,
        algod: Optional[AlgodClient] = None,
    ) -> None:
        self.base_url = str(base_url).rstrip("/")
        self.timeout_s = float(timeout_s)
        self.algod = algod if algod is not None else AlgodClient(str(token or ""), self.base_url)

    # ----------------------------
    # transport
    # ----------------------------

    def _call(self, op: str, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        try:
            return fn(*args, timeout=self.timeout_s, **kwargs)
        except AlgodHTTPError as e:
            status = int(e.code or 0)
            raise LedgerError(f"http_{status}", str(e)[:500], {"op": op}) from e
        except AlgodResponseError as e:
            raise LedgerError("bad_response", str(e), {"op": op}) from e
        except (urllib.error.URLError, OSError) as e:
            reason = getattr(e, "reason", None) or str(e)
            raise LedgerError("unreachable", str(reason), {"op": op}) from e
        except (KeyError, TypeError) as e:
            raise LedgerError("bad_response", f"missing field {e}", {"op": op}) from e

    @staticmethod
    def _parse(model: Type[M], obj: Any, op: str) -> M:
        try:
            return model.model_validate(obj)
        except ValidationError as e:
            raise LedgerError("bad_response", f"{model.__name__}: {e.errors()[:3]}", {"op": op}) from e

    # ----------------------------
    # reads
    # ----------------------------

    def account_balance(self, address: str) -> int:
        raw = self._call("account_info", self.algod.account_info, address, exclude="all")
        return int(self._parse(AccountResponse, raw, "account_info").amount)

    def suggested_params(self) -> SuggestedParams:
        return self._call("suggested_params", self.algod.suggested_params)

    def simulate_transactions(self, request: SimulateRequest) -> Json:
        raw = self._call("simulate_transactions", self.algod.simulate_transactions, request)
        self._parse(SimulateResponse, raw, "simulate_transactions")
        return raw  # type: ignore[return-value]

    # ----------------------------
    # writes
    # ----------------------------

    def send_transactions(self, stxns: List[GenericSignedTransaction]) -> str:
        if not stxns:
            raise ValueError("refusing to send an empty group")
        tx_id = self._call("send_transactions", self.algod.send_transactions, stxns)
        log_event(logger, "ledger_group_sent", tx_id=tx_id, size=len(stxns))
        return tx_id

    def wait_for_confirmation(self, tx_id: str, *, max_rounds: int) -> int:
        try:
            info = self._call(
                "wait_for_confirmation",
                transaction.wait_for_confirmation,
                self.algod,
                tx_id,
                int(max_rounds),
            )
        except TransactionRejectedError as e:
            raise LedgerError("pool_error", str(e), {"tx_id": tx_id}) from e
        except ConfirmationTimeoutError as e:
            raise LedgerError(
                "confirmation_timeout",
                f"tx {tx_id} not confirmed after {max_rounds} rounds",
                {"tx_id": tx_id},
            ) from e
        return int(info["confirmed-round"])
