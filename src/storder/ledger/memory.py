# src/storder/ledger/memory.py
from __future__ import annotations

import base64
import copy
import random
from typing import Any, Dict, List, Optional, Tuple

from algosdk import abi, encoding, transaction
from algosdk.atomic_transaction_composer import ABI_RETURN_HASH
from algosdk.error import ABIEncodingError, ABITypeError
from algosdk.logic import get_application_address
from algosdk.v2client.models import SimulateRequest

from storder.contract import GET_PRICE, GET_RANDOM_ORDER_NODE, NODES_BOX, PLACE_ORDER
from storder.crypto.sig import verify_ed25519_signature
from storder.errors import LedgerError

Json = Dict[str, Any]

_METHODS = (GET_PRICE, GET_RANDOM_ORDER_NODE, PLACE_ORDER)
_VALIDITY_ROUNDS = 1000


class _Reject(Exception):
    def __init__(self, reason: str, index: int = 0) -> None:
        super().__init__(reason)
        self.reason = reason
        self.index = index


def _wire(stx: Any) -> Any:
    """Round-trip a txn through its msgpack wire form, as a node receives it."""
    return encoding.msgpack_decode(encoding.msgpack_encode(stx))


def _ungrouped(txn: transaction.Transaction) -> transaction.Transaction:
    c = copy.copy(txn)
    c.group = None
    return c


def _abi_args(method: abi.Method, app_args: List[bytes]) -> List[Any]:
    types = [a.type for a in method.args if not abi.is_abi_transaction_type(a.type)]
    if len(app_args) - 1 != len(types):
        raise ValueError(f"{method.name} takes {len(types)} args; got {len(app_args) - 1}")
    return [t.decode(raw) for t, raw in zip(types, app_args[1:])]


def _abi_return(method: abi.Method, value: Any) -> str:
    return base64.b64encode(ABI_RETURN_HASH + method.returns.type.encode(value)).decode("ascii")


class InMemoryLedger:
    """
    In-process ledger + storage-order contract used for unit tests.

    - No sockets, no consensus: one round per accepted group
    - Same surface as HttpLedgerClient (LedgerReader + LedgerWriter)
    - every txn is re-read from its msgpack wire form, so the SDK encoding
      is what gets checked
    - simulate_transactions() answers in the node's JSON shape so the
      composer's decode path runs
    - send_transactions() verifies group id, signatures, validity window and
      fees, then applies every txn to scratch copies and commits only if all pass

    Pricing: base_price + ceil(size / 1024) * kib_price, times
    permanent_multiplier for permanent storage.
    """

    def __init__(
        self,
        *,
        app_id: int,
        base_price: int = 500,
        kib_price: int = 1000,
        permanent_multiplier: int = 200,
        min_fee: int = 1000,
        genesis_id: str = "memnet-v1",
        seed: int = 0,
    ) -> None:
        self.app_id = int(app_id)
        self.app_address = get_application_address(self.app_id)
        self.base_price = int(base_price)
        self.kib_price = int(kib_price)
        self.permanent_multiplier = int(permanent_multiplier)
        self.min_fee = int(min_fee)
        self.genesis_id = genesis_id
        self.genesis_hash = base64.b64encode(encoding.checksum(genesis_id.encode("utf-8"))).decode("ascii")

        self.round = 1
        self.balances: Dict[str, int] = {}
        self.nodes: List[str] = []
        self.orders: Dict[str, Json] = {}
        self.confirmed: Dict[str, int] = {}
        self.calls: List[Tuple[str, Any]] = []

        self._rng = random.Random(seed)

    # ---- helpers for tests / harness ----

    def fund(self, address: str, amount: int) -> None:
        self.balances[address] = self.balances.get(address, 0) + int(amount)

    def register_node(self, address: str) -> None:
        if not encoding.is_valid_address(address):
            raise ValueError(f"not an address: {address!r}")
        if address not in self.nodes:
            self.nodes.append(address)

    def advance(self, rounds: int = 1) -> None:
        self.round += int(rounds)

    def price(self, size: int, is_permanent: bool) -> int:
        kib = (int(size) + 1023) // 1024
        p = self.base_price + kib * self.kib_price
        return p * self.permanent_multiplier if is_permanent else p

    # ---- LedgerReader ----

    def account_balance(self, address: str) -> int:
        self.calls.append(("account_balance", address))
        return int(self.balances.get(address, 0))

    def suggested_params(self) -> transaction.SuggestedParams:
        self.calls.append(("suggested_params", self.round))
        return transaction.SuggestedParams(
            fee=self.min_fee,
            first=self.round,
            last=self.round + _VALIDITY_ROUNDS,
            gh=self.genesis_hash,
            gen=self.genesis_id,
            flat_fee=True,
            min_fee=self.min_fee,
        )

    def simulate_transactions(self, request: SimulateRequest) -> Json:
        group_in = request.txn_groups[0].txns if request.txn_groups else []
        txns = []
        for stx in group_in:
            decoded = _wire(stx)
            txns.append(decoded.transaction if isinstance(decoded, transaction.SignedTransaction) else decoded)
        self.calls.append(("simulate_transactions", [self._method_name(t) for t in txns]))

        results: List[Json] = []
        group: Json = {"txn-results": results}
        failed = False
        for idx, txn in enumerate(txns):
            logs: List[str] = []
            if not failed:
                try:
                    logs = self._eval_readonly(txn, idx)
                except _Reject as r:
                    group["failure-message"] = f"logic eval error: {r.reason}"
                    group["failed-at"] = [idx]
                    failed = True
            results.append({"txn-result": {"logs": logs, "pool-error": ""}})
        return {"version": 2, "last-round": self.round, "txn-groups": [group]}

    # ---- LedgerWriter ----

    def send_transactions(self, stxns: List[Any]) -> str:
        signed = [_wire(s) for s in stxns]
        tx_ids = [s.get_txid() for s in signed if isinstance(s, transaction.SignedTransaction)]
        self.calls.append(("send_transactions", tx_ids))
        try:
            self._check_group(signed)
            balances, orders = self._apply([s.transaction for s in signed])
        except _Reject as r:
            raise LedgerError(
                "rejected",
                f"transaction rejected at index {r.index}: {r.reason}",
                {"failed_at": r.index},
            ) from None

        self.balances = balances
        self.orders = orders
        self.round += 1
        for tx_id in tx_ids:
            self.confirmed[tx_id] = self.round
        return tx_ids[0]

    def wait_for_confirmation(self, tx_id: str, *, max_rounds: int) -> int:
        self.calls.append(("wait_for_confirmation", tx_id))
        rnd = self.confirmed.get(tx_id)
        if rnd is None:
            raise LedgerError(
                "confirmation_timeout",
                f"tx {tx_id} not confirmed after {max_rounds} rounds",
                {"tx_id": tx_id},
            )
        return rnd

    # ---- contract evaluation ----

    @staticmethod
    def _method_for(txn: transaction.Transaction) -> Optional[abi.Method]:
        args = getattr(txn, "app_args", None) or []
        sel = args[0] if args else b""
        for m in _METHODS:
            if m.get_selector() == sel:
                return m
        return None

    def _method_name(self, txn: transaction.Transaction) -> str:
        m = self._method_for(txn) if txn.type == "appl" else None
        return m.name if m is not None else str(txn.type or "")

    def _require_app(self, txn: transaction.Transaction, index: int) -> abi.Method:
        if not isinstance(txn, transaction.ApplicationCallTxn):
            raise _Reject("not an application call", index)
        if int(txn.index or 0) != self.app_id:
            raise _Reject(f"unknown application {txn.index}", index)
        if not txn.app_args:
            raise _Reject("missing method selector", index)
        method = self._method_for(txn)
        if method is None:
            raise _Reject("unknown method selector", index)
        return method

    def _decode(self, method: abi.Method, txn: transaction.ApplicationCallTxn, index: int) -> List[Any]:
        try:
            return _abi_args(method, list(txn.app_args or []))
        except (ABIEncodingError, ABITypeError, ValueError) as e:
            raise _Reject(f"bad abi args: {e}", index) from None

    def _eval_readonly(self, txn: transaction.Transaction, index: int = 0) -> List[str]:
        method = self._require_app(txn, index)
        args = self._decode(method, txn, index)  # type: ignore[arg-type]

        if method is GET_PRICE:
            size, is_permanent = args
            return [_abi_return(GET_PRICE, self.price(size, is_permanent))]

        if method is GET_RANDOM_ORDER_NODE:
            boxes = [bytes(b.name) for b in getattr(txn, "boxes", None) or []]
            if NODES_BOX not in boxes:
                raise _Reject("invalid Box reference nodes", index)
            if not self.nodes:
                raise _Reject("no storage nodes registered", index)
            return [_abi_return(GET_RANDOM_ORDER_NODE, self._rng.choice(self.nodes))]

        raise _Reject("placeOrder needs a grouped escrow payment", index)

    def _check_group(self, signed: List[Any]) -> None:
        if not signed:
            raise _Reject("empty group")
        for idx, s in enumerate(signed):
            if not isinstance(s, transaction.SignedTransaction):
                raise _Reject("missing signature", idx)

        txns = [s.transaction for s in signed]
        grp = txns[0].group
        if len(txns) > 1:
            if not grp or any(t.group != grp for t in txns):
                raise _Reject("txns do not share a group id")
            if transaction.calculate_group_id([_ungrouped(t) for t in txns]) != grp:
                raise _Reject("incomplete group: group id mismatch")

        for idx, s in enumerate(signed):
            t = s.transaction
            sig = base64.b64decode(s.signature or "")
            pub = encoding.decode_address(t.sender)
            if not verify_ed25519_signature(message=t.bytes_to_sign(), sig=sig, pubkey=pub):
                raise _Reject("invalid signature", idx)
            if t.genesis_id != self.genesis_id or t.genesis_hash != self.genesis_hash:
                raise _Reject("genesis mismatch", idx)
            if not int(t.first_valid_round or 0) <= self.round <= int(t.last_valid_round or 0):
                raise _Reject(
                    f"txn dead: round {self.round} outside [{t.first_valid_round}, {t.last_valid_round}]", idx
                )
            if int(t.fee or 0) < self.min_fee:
                raise _Reject("fee below minimum", idx)

    def _apply(self, txns: List[transaction.Transaction]) -> Tuple[Dict[str, int], Dict[str, Json]]:
        balances = dict(self.balances)
        orders = dict(self.orders)

        def debit(addr: str, amount: int, index: int) -> None:
            have = balances.get(addr, 0)
            if have < amount:
                raise _Reject(f"overspend: account {addr} balance {have} below {amount}", index)
            balances[addr] = have - amount

        for idx, t in enumerate(txns):
            debit(t.sender, int(t.fee or 0), idx)

            if isinstance(t, transaction.PaymentTxn):
                debit(t.sender, int(t.amt or 0), idx)
                balances[t.receiver] = balances.get(t.receiver, 0) + int(t.amt or 0)
                continue

            method = self._require_app(t, idx)
            if method is not PLACE_ORDER:
                self._eval_readonly(t, idx)
                continue

            cid, size, is_permanent, merchant = self._decode(PLACE_ORDER, t, idx)  # type: ignore[arg-type]

            seed = txns[idx - 1] if idx > 0 else None
            if not isinstance(seed, transaction.PaymentTxn):
                raise _Reject("placeOrder: escrow payment must precede the call", idx)
            if seed.receiver != self.app_address:
                raise _Reject("placeOrder: escrow receiver is not the app address", idx)
            if seed.sender != t.sender:
                raise _Reject("placeOrder: escrow sender differs from caller", idx)

            price = self.price(size, is_permanent)
            paid = int(seed.amt or 0)
            if paid < price:
                raise _Reject(f"placeOrder: price mismatch, paid {paid} < price {price}", idx)
            if merchant not in self.nodes:
                raise _Reject(f"placeOrder: merchant {merchant} is not a registered node", idx)
            if cid in orders:
                raise _Reject(f"placeOrder: order for {cid} already exists", idx)

            orders[cid] = {
                "cid": cid,
                "size": int(size),
                "is_permanent": bool(is_permanent),
                "merchant": merchant,
                "payer": t.sender,
                "amount": paid,
                "tx_id": t.get_txid(),
            }

        return balances, orders
