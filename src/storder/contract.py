# src/storder/contract.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Sequence, Tuple

from algosdk.abi import Method
from algosdk.atomic_transaction_composer import (
    AtomicTransactionComposer,
    EmptySigner,
    SimulateAtomicTransactionResponse,
    TransactionSigner,
)
from algosdk.error import ABIEncodingError, ABITypeError, AtomicTransactionComposerError
from algosdk.logic import get_application_address
from algosdk.transaction import SuggestedParams
from algosdk.v2client.models import SimulateRequest

from storder.errors import LedgerError, SimulationError
from storder.protocols import LedgerReader

Json = Dict[str, Any]

GET_PRICE = Method.from_signature("getPrice(uint64,bool)uint64")
GET_RANDOM_ORDER_NODE = Method.from_signature("getRandomOrderNode()address")
PLACE_ORDER = Method.from_signature("placeOrder(pay,string,uint64,bool,address)void")

# Registry box holding the storage nodes eligible for orders.
NODES_BOX = b"nodes"


@dataclass(frozen=True)
class StorageOrderContract:
    """Client-side description of the deployed storage-order application."""

    app_id: int

    @property
    def address(self) -> str:
        """Custodial account that receives escrow payments."""
        return get_application_address(int(self.app_id))

    def compose(
        self,
        atc: AtomicTransactionComposer,
        method: Method,
        *,
        sender: str,
        params: SuggestedParams,
        signer: TransactionSigner,
        args: Sequence[Any] = (),
        boxes: Tuple[bytes, ...] = (),
    ) -> AtomicTransactionComposer:
        """Append a method call (and any txn arguments) to `atc`.

        Raises ValueError when `args` do not fit the method signature.
        """
        try:
            return atc.add_method_call(
                app_id=self.app_id,
                method=method,
                sender=sender,
                sp=params,
                signer=signer,
                method_args=list(args),
                boxes=[(self.app_id, name) for name in boxes],
            )
        except (AtomicTransactionComposerError, ABIEncodingError, ABITypeError, TypeError) as e:
            raise ValueError(f"{method.name}: {e}") from e

    def simulate_call(
        self,
        ledger: LedgerReader,
        method: Method,
        *,
        sender: str,
        args: Sequence[Any] = (),
        boxes: Tuple[bytes, ...] = (),
    ) -> Any:
        """Read-only invocation: compose an unsigned call, simulate it, decode the return.

        Never signs or broadcasts. Raises SimulationError on revert, transport
        failure or a missing return value.
        """
        atc = AtomicTransactionComposer()
        request = SimulateRequest(txn_groups=[], allow_empty_signatures=True)
        try:
            params = ledger.suggested_params()
            self.compose(atc, method, sender=sender, params=params, signer=EmptySigner(), args=args, boxes=boxes)
            resp = atc.simulate(ledger, request)  # type: ignore[arg-type]
        except LedgerError as e:
            raise SimulationError(
                "simulate_failed",
                f"{method.name}: {e.reason}",
                {"ledger_code": e.code, "app_id": self.app_id},
            ) from e
        except (KeyError, IndexError, TypeError) as e:
            raise SimulationError("bad_response", f"{method.name}: malformed simulate response") from e

        return _method_return(resp, method, self.app_id)


def _method_return(resp: SimulateAtomicTransactionResponse, method: Method, app_id: int) -> Any:
    if resp.failure_message:
        raise SimulationError(
            "reverted",
            f"{method.name}: {resp.failure_message}",
            {"failed_at": list(resp.failed_at or [])},
        )

    if not resp.abi_results:
        raise SimulationError("no_result", f"{method.name}: simulate returned no method results")

    result = resp.abi_results[-1]
    if isinstance(result.decode_error, AtomicTransactionComposerError):
        # no log line carrying the return prefix
        raise SimulationError("no_result", f"{method.name} returned no value", {"app_id": app_id})
    if result.decode_error is not None:
        raise SimulationError("bad_return", f"{method.name}: {result.decode_error}", {"app_id": app_id})
    if result.return_value is None:
        raise SimulationError("no_result", f"{method.name} returned no value", {"app_id": app_id})
    return result.return_value
