from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import pytest
from algosdk.v2client.models import SimulateRequest

from storder.contract import StorageOrderContract
from storder.errors import NoFundsError, SimulationError, SubmissionError, UploadError
from storder.identity import KeystoreIdentityProvider
from storder.keystore import SqliteKeystore
from storder.ledger.memory import InMemoryLedger
from storder.models import Identity, UploadResult
from storder.orchestrator import Orchestrator, OrderRun, OrderState
from storder.testing import deterministic_address

Json = Dict[str, Any]

APP_ID = 4004
FUNDS = 5_000_000


class _StubPublisher:
    def __init__(self, cid: str = "Qm123", size: Optional[int] = None, fail: Optional[UploadError] = None) -> None:
        self.cid = cid
        self.size = size
        self.fail = fail
        self.calls: List[Tuple[bytes, str, str]] = []

    def publish(self, data: bytes, filename: str, *, identity: Identity) -> UploadResult:
        self.calls.append((data, filename, identity.address))
        if self.fail is not None:
            raise self.fail
        return UploadResult(cid=self.cid, size=self.size if self.size is not None else len(data))


class _DriftingLedger(InMemoryLedger):
    """Price moves up right after every quote is served."""

    def simulate_transactions(self, request: SimulateRequest) -> Json:
        out = super().simulate_transactions(request)
        if self.calls[-1] == ("simulate_transactions", ["getPrice"]):
            self.kib_price += 1
        return out


def _mk(
    tmp_path: Path,
    ledger: InMemoryLedger,
    publisher: _StubPublisher,
    *,
    funds: int = FUNDS,
) -> Tuple[Orchestrator, str]:
    ks = SqliteKeystore(path=str(tmp_path / "keystore.db"))
    ks.init_schema()
    addr = ks.get_or_create("uploader").address
    if funds:
        ledger.fund(addr, funds)

    orch = Orchestrator(
        identity_provider=KeystoreIdentityProvider(keystore=ks, ledger=ledger),
        publisher=publisher,
        reader=ledger,
        writer=ledger,
        contract=StorageOrderContract(app_id=APP_ID),
    )
    return orch, addr


def _calls(ledger: InMemoryLedger) -> List[str]:
    return [name for name, _ in ledger.calls]


def test_happy_path_places_order_for_quoted_amount(tmp_path: Path) -> None:
    ledger = InMemoryLedger(app_id=APP_ID)
    node_addr = deterministic_address(label="node-1")
    ledger.register_node(node_addr)
    pub = _StubPublisher(cid="Qm123", size=1024)
    orch, addr = _mk(tmp_path, ledger, pub)

    run = orch.run(b"x" * 1024, "a.txt", is_permanent=False)

    assert run.state is OrderState.ORDER_SUBMITTED
    assert run.history == [
        OrderState.IDLE,
        OrderState.IDENTITY_RESOLVED,
        OrderState.CONTENT_PUBLISHED,
        OrderState.PRICE_QUOTED,
        OrderState.NODE_SELECTED,
        OrderState.ORDER_SUBMITTED,
    ]
    assert run.address == addr
    assert run.quote == 1500
    assert run.node == node_addr
    assert run.confirmation is not None
    assert len(run.confirmation.tx_ids) == 2

    # Publisher was authenticated as the resolved identity.
    assert pub.calls == [(b"x" * 1024, "a.txt", addr)]

    order = ledger.orders["Qm123"]
    assert order == {
        "cid": "Qm123",
        "size": 1024,
        "is_permanent": False,
        "merchant": node_addr,
        "payer": addr,
        "amount": 1500,
        "tx_id": run.confirmation.tx_ids[1],
    }
    assert ledger.balances[ledger.app_address] == 1500
    assert ledger.balances[addr] == FUNDS - 1500 - 2 * ledger.min_fee
    assert orch.last_run is run


def test_steps_run_in_order(tmp_path: Path) -> None:
    ledger = InMemoryLedger(app_id=APP_ID)
    ledger.register_node(deterministic_address(label="node-1"))
    orch, _ = _mk(tmp_path, ledger, _StubPublisher(size=10))

    orch.run(b"0123456789", "b.txt")

    calls = _calls(ledger)
    assert calls[0] == "account_balance"
    sims = [arg for name, arg in ledger.calls if name == "simulate_transactions"]
    assert sims == [["getPrice"], ["getRandomOrderNode"]]
    assert calls.index("send_transactions") > max(i for i, c in enumerate(calls) if c == "simulate_transactions")
    assert calls[-1] == "wait_for_confirmation"


def test_permanent_flag_flows_to_quote_and_order(tmp_path: Path) -> None:
    ledger = InMemoryLedger(app_id=APP_ID)
    ledger.register_node(deterministic_address(label="node-1"))
    orch, _ = _mk(tmp_path, ledger, _StubPublisher(cid="QmPerm", size=1024))

    run = orch.run(b"x" * 1024, "p.txt", is_permanent=True)

    assert run.quote == ledger.price(1024, True)
    assert ledger.orders["QmPerm"]["is_permanent"] is True
    assert ledger.orders["QmPerm"]["amount"] == run.quote


def test_unfunded_identity_stops_before_any_upload(tmp_path: Path) -> None:
    ledger = InMemoryLedger(app_id=APP_ID)
    ledger.register_node(deterministic_address(label="node-1"))
    pub = _StubPublisher()
    orch, addr = _mk(tmp_path, ledger, pub, funds=0)

    with pytest.raises(NoFundsError) as e:
        orch.run(b"data", "a.txt")

    assert addr in e.value.reason
    assert pub.calls == []
    assert _calls(ledger) == ["account_balance"]
    assert ledger.orders == {}

    run = orch.last_run
    assert run is not None
    assert run.state is OrderState.FAILED
    assert run.failed_from is OrderState.IDLE
    assert run.failure_code == "no_funds"


def test_price_drift_between_quote_and_submit_is_rejected(tmp_path: Path) -> None:
    ledger = _DriftingLedger(app_id=APP_ID)
    ledger.register_node(deterministic_address(label="node-1"))
    pub = _StubPublisher(cid="QmDrift", size=1024)
    orch, addr = _mk(tmp_path, ledger, pub)
    before = dict(ledger.balances)

    with pytest.raises(SubmissionError) as e:
        orch.run(b"x" * 1024, "a.txt")

    assert "price mismatch" in e.value.reason
    assert ledger.balances == before
    assert ledger.orders == {}

    # Content stays published; the run keeps what was uploaded.
    run = orch.last_run
    assert run is not None
    assert len(pub.calls) == 1
    assert run.upload == UploadResult(cid="QmDrift", size=1024)
    assert run.quote == 1500
    assert run.state is OrderState.FAILED
    assert run.failed_from is OrderState.NODE_SELECTED
    assert run.to_json()["failure"]["code"] == "rejected"


def test_upload_failure_stops_before_pricing(tmp_path: Path) -> None:
    ledger = InMemoryLedger(app_id=APP_ID)
    ledger.register_node(deterministic_address(label="node-1"))
    pub = _StubPublisher(fail=UploadError("http_401", "invalid signature"))
    orch, _ = _mk(tmp_path, ledger, pub)

    with pytest.raises(UploadError):
        orch.run(b"data", "a.txt")

    assert "simulate_transactions" not in _calls(ledger)
    assert orch.last_run is not None
    assert orch.last_run.failed_from is OrderState.IDENTITY_RESOLVED


def test_empty_node_registry_fails_after_quote(tmp_path: Path) -> None:
    ledger = InMemoryLedger(app_id=APP_ID)
    orch, _ = _mk(tmp_path, ledger, _StubPublisher(size=1024))

    with pytest.raises(SimulationError):
        orch.run(b"x" * 1024, "a.txt")

    run = orch.last_run
    assert run is not None
    assert run.quote == 1500
    assert run.node is None
    assert run.failed_from is OrderState.PRICE_QUOTED
    assert "send_transactions" not in _calls(ledger)


def test_order_run_refuses_illegal_transitions() -> None:
    run = OrderRun(filename="a.txt", is_permanent=False)

    with pytest.raises(RuntimeError):
        run.advance(OrderState.PRICE_QUOTED)

    run.advance(OrderState.IDENTITY_RESOLVED)
    run.fail("x", "boom")
    with pytest.raises(RuntimeError):
        run.advance(OrderState.CONTENT_PUBLISHED)
    with pytest.raises(RuntimeError):
        run.fail("y", "again")

    out = run.to_json()
    assert out["state"] == "failed"
    assert out["failed_from"] == "identity_resolved"
    assert out["history"] == ["idle", "identity_resolved", "failed"]


def test_keystore_schema_mismatch_ends_run_as_failed(tmp_path: Path) -> None:
    ledger = InMemoryLedger(app_id=APP_ID)
    ledger.register_node(deterministic_address(label="node-1"))
    pub = _StubPublisher()
    orch, _ = _mk(tmp_path, ledger, pub)

    ks = SqliteKeystore(path=str(tmp_path / "keystore.db"))
    with ks.write_tx() as con:
        con.execute("UPDATE meta SET value='9' WHERE key='schema_version';")

    with pytest.raises(RuntimeError) as e:
        orch.run(b"data", "a.txt")
    assert "schema_version mismatch" in str(e.value)

    run = orch.last_run
    assert run is not None
    assert run.state is OrderState.FAILED
    assert run.failed_from is OrderState.IDLE
    assert run.failure_code == "internal"
    assert "have=9" in run.failure_reason
    assert pub.calls == []
    assert ledger.orders == {}
