from __future__ import annotations

import base64
from typing import Any, Dict, List

import pytest
from algosdk.atomic_transaction_composer import ABI_RETURN_HASH
from algosdk.v2client.models import SimulateRequest

from storder.contract import StorageOrderContract
from storder.errors import LedgerError, SimulationError
from storder.ledger.memory import InMemoryLedger
from storder.nodes import NodeSelector
from storder.oracle import PriceOracleClient
from storder.testing import deterministic_address

Json = Dict[str, Any]

APP_ID = 2002


def _contract(app_id: int = APP_ID) -> StorageOrderContract:
    return StorageOrderContract(app_id=app_id)


def test_quote_matches_contract_pricing() -> None:
    ledger = InMemoryLedger(app_id=APP_ID)
    oracle = PriceOracleClient(contract=_contract(), ledger=ledger)

    assert oracle.quote(1024, False) == 1500
    assert oracle.quote(1025, False) == 2500
    assert oracle.quote(1024, True) == 1500 * 200


def test_quote_is_non_negative_and_monotonic_in_size() -> None:
    ledger = InMemoryLedger(app_id=APP_ID)
    oracle = PriceOracleClient(contract=_contract(), ledger=ledger)

    sizes = [1, 512, 1023, 1024, 1025, 4096, 65_536, 10_000_000]
    for perm in (False, True):
        quotes = [oracle.quote(s, perm) for s in sizes]
        assert all(q >= 0 for q in quotes)
        assert quotes == sorted(quotes)

    for s in sizes:
        assert oracle.quote(s, True) >= oracle.quote(s, False)


def test_quote_is_read_only() -> None:
    ledger = InMemoryLedger(app_id=APP_ID)
    payer = deterministic_address(label="payer")
    ledger.fund(payer, 10_000)
    before = (ledger.round, dict(ledger.balances), dict(ledger.orders))

    PriceOracleClient(contract=_contract(), ledger=ledger).quote(2048, False, sender=payer)

    assert (ledger.round, ledger.balances, ledger.orders) == before
    assert ("simulate_transactions", ["getPrice"]) in ledger.calls
    assert not any(name == "send_transactions" for name, _ in ledger.calls)


def test_quote_is_not_cached() -> None:
    ledger = InMemoryLedger(app_id=APP_ID)
    oracle = PriceOracleClient(contract=_contract(), ledger=ledger)

    first = oracle.quote(1024, False)
    ledger.kib_price = 2000
    second = oracle.quote(1024, False)

    assert first == 1500
    assert second == 2500


def test_quote_rejects_bad_size() -> None:
    ledger = InMemoryLedger(app_id=APP_ID)
    oracle = PriceOracleClient(contract=_contract(), ledger=ledger)

    for bad in (0, -1, True, 1.5):
        with pytest.raises(ValueError):
            oracle.quote(bad, False)  # type: ignore[arg-type]
    assert ledger.calls == []


def test_quote_on_unknown_app_reverts() -> None:
    ledger = InMemoryLedger(app_id=APP_ID)
    oracle = PriceOracleClient(contract=_contract(APP_ID + 1), ledger=ledger)

    with pytest.raises(SimulationError) as e:
        oracle.quote(1024, False)
    assert e.value.code == "reverted"
    assert "unknown application" in e.value.reason


def test_quote_wraps_ledger_transport_errors() -> None:
    class _Down(InMemoryLedger):
        def simulate_transactions(self, request: SimulateRequest) -> Json:
            raise LedgerError("http_503", "node overloaded")

    ledger = _Down(app_id=APP_ID)
    with pytest.raises(SimulationError) as e:
        PriceOracleClient(contract=_contract(), ledger=ledger).quote(1024, False)
    assert e.value.code == "simulate_failed"
    assert e.value.details["ledger_code"] == "http_503"


def test_quote_without_return_log_is_no_result() -> None:
    class _Silent(InMemoryLedger):
        def simulate_transactions(self, request: SimulateRequest) -> Json:
            return {"last-round": 1, "txn-groups": [{"txn-results": [{"txn-result": {"logs": []}}]}]}

    ledger = _Silent(app_id=APP_ID)
    with pytest.raises(SimulationError) as e:
        PriceOracleClient(contract=_contract(), ledger=ledger).quote(1024, False)
    assert e.value.code == "no_result"


def test_select_node_returns_registered_node() -> None:
    ledger = InMemoryLedger(app_id=APP_ID)
    nodes = [deterministic_address(label=f"node-{i}") for i in range(3)]
    for n in nodes:
        ledger.register_node(n)

    selector = NodeSelector(contract=_contract(), ledger=ledger)
    picked = {selector.select_node() for _ in range(20)}

    assert picked
    assert picked <= set(nodes)
    assert not any(name == "send_transactions" for name, _ in ledger.calls)


def test_select_node_with_empty_registry_fails() -> None:
    ledger = InMemoryLedger(app_id=APP_ID)

    with pytest.raises(SimulationError) as e:
        NodeSelector(contract=_contract(), ledger=ledger).select_node()
    assert e.value.code == "reverted"
    assert "no storage nodes" in e.value.reason


def test_select_node_rejects_malformed_address() -> None:
    class _Garbage(InMemoryLedger):
        def simulate_transactions(self, request: SimulateRequest) -> Json:
            # return prefix + 31 bytes: one short of an address
            log = base64.b64encode(ABI_RETURN_HASH + b"\x00" * 31).decode("ascii")
            return {"txn-groups": [{"txn-results": [{"txn-result": {"logs": [log]}}]}]}

    ledger = _Garbage(app_id=APP_ID)
    with pytest.raises(SimulationError) as e:
        NodeSelector(contract=_contract(), ledger=ledger).select_node()
    assert e.value.code == "bad_return"


def test_quote_simulates_an_unsigned_call() -> None:
    seen: List[SimulateRequest] = []

    class _Recording(InMemoryLedger):
        def simulate_transactions(self, request: SimulateRequest) -> Json:
            seen.append(request)
            return super().simulate_transactions(request)

    ledger = _Recording(app_id=APP_ID)
    payer = deterministic_address(label="payer")
    PriceOracleClient(contract=_contract(), ledger=ledger).quote(1024, False, sender=payer)

    assert seen[0].allow_empty_signatures is True
    (stx,) = seen[0].txn_groups[0].txns
    assert not stx.signature
    assert stx.transaction.sender == payer
    assert stx.transaction.index == APP_ID
