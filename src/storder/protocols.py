# src/storder/protocols.py
"""
Capability interfaces consumed by the order workflow.

The orchestrator only talks to these. Production wiring uses the keystore,
the HTTP gateway and the algod-backed ledger client; tests substitute
in-process doubles (see storder.ledger.memory).

Ledger method names follow algosdk's AlgodClient, so an
AtomicTransactionComposer can simulate against any LedgerReader.

This module is pure structure: no I/O here.
"""

from __future__ import annotations

from typing import Any, Dict, List, Protocol, runtime_checkable

from algosdk.transaction import GenericSignedTransaction, SuggestedParams
from algosdk.v2client.models import SimulateRequest

from storder.models import Identity, UploadResult

Json = Dict[str, Any]


@runtime_checkable
class IdentityProvider(Protocol):
    def resolve(self) -> Identity:
        """Return the signing identity. Raises NoFundsError on a zero balance."""
        ...


@runtime_checkable
class ContentPublisher(Protocol):
    def publish(self, data: bytes, filename: str, *, identity: Identity) -> UploadResult:
        """Publish bytes, authenticated as `identity`. Raises UploadError."""
        ...


@runtime_checkable
class LedgerReader(Protocol):
    def account_balance(self, address: str) -> int:
        ...

    def suggested_params(self) -> SuggestedParams:
        ...

    def simulate_transactions(self, request: SimulateRequest) -> Json:
        """Evaluate a txn group without committing. Returns the node's simulate response."""
        ...


@runtime_checkable
class LedgerWriter(Protocol):
    def send_transactions(self, stxns: List[GenericSignedTransaction]) -> str:
        """Broadcast a signed group. Returns the first tx id. Raises LedgerError."""
        ...

    def wait_for_confirmation(self, tx_id: str, *, max_rounds: int) -> int:
        """Block until `tx_id` is confirmed. Returns the confirmed round."""
        ...
