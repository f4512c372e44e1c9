# src/storder/models.py
from __future__ import annotations

import base64
from dataclasses import dataclass, field
from typing import Any, Dict, Tuple

from algosdk.atomic_transaction_composer import AtomicTransactionComposer
from algosdk.transaction import ApplicationCallTxn, GenericSignedTransaction, PaymentTxn

Json = Dict[str, Any]


@dataclass(frozen=True)
class Identity:
    """Signing identity resolved once per run.

    secret_key is 64 bytes (seed || pubkey) and is excluded from repr so it
    cannot leak through logs or tracebacks.
    """

    address: str
    secret_key: bytes = field(repr=False)
    balance: int = 0  # observed at resolve time; re-query the ledger for a fresh value


@dataclass(frozen=True)
class UploadResult:
    cid: str
    size: int

    def __post_init__(self) -> None:
        if not self.cid:
            raise ValueError("cid must be non-empty")
        if int(self.size) <= 0:
            raise ValueError("size must be a positive integer")


@dataclass(frozen=True)
class OrderRequest:
    """Unsigned order: escrow payment + placeOrder call, composed but not yet grouped.

    The composer owns both txns and their signer; the payment is the `pay`
    argument of the call and sits directly before it.
    """

    composer: AtomicTransactionComposer = field(repr=False)
    payment: PaymentTxn
    cid: str
    size: int
    is_permanent: bool
    node: str

    @property
    def app_call(self) -> ApplicationCallTxn:
        return self.composer.txn_list[-1].txn

    @property
    def amount(self) -> int:
        return int(self.payment.amt)


@dataclass(frozen=True)
class SignedGroup:
    group_id: bytes
    stxns: Tuple[GenericSignedTransaction, ...]
    tx_ids: Tuple[str, ...]

    @property
    def group_id_b64(self) -> str:
        return base64.b64encode(self.group_id).decode("ascii")


@dataclass(frozen=True)
class Confirmation:
    confirmed_round: int
    tx_ids: Tuple[str, ...]
    group_id: str  # base64

    def to_json(self) -> Json:
        return {"confirmed_round": self.confirmed_round, "tx_ids": list(self.tx_ids), "group_id": self.group_id}
