# src/storder/submitter.py
from __future__ import annotations

import logging

from algosdk.atomic_transaction_composer import (
    AccountTransactionSigner,
    AtomicTransactionComposer,
    TransactionWithSigner,
)
from algosdk.encoding import is_valid_address
from algosdk.transaction import PaymentTxn

from storder.contract import PLACE_ORDER, StorageOrderContract
from storder.crypto.sig import sdk_private_key
from storder.errors import LedgerError, SubmissionError
from storder.models import Confirmation, Identity, OrderRequest, SignedGroup, UploadResult
from storder.order_logging import log_event
from storder.protocols import LedgerReader, LedgerWriter

logger = logging.getLogger("storder.submitter")


class OrderSubmitter:
    """Build, group, sign and broadcast the escrow payment + placeOrder call.

    Steps (each feeds the next):
      1) fetch fresh txn params and build the escrow payment (amount = quote)
      2) compose the placeOrder call with the payment as its `pay` argument
      3) the composer assigns one group id to both and signs them
      4) broadcast, wait for confirmation

    A rejected group surfaces as SubmissionError. There is no local retry;
    re-quoting is the caller's decision.
    """

    def __init__(
        self,
        *,
        contract: StorageOrderContract,
        reader: LedgerReader,
        writer: LedgerWriter,
        confirm_rounds: int = 5,
    ) -> None:
        self.contract = contract
        self.reader = reader
        self.writer = writer
        self.confirm_rounds = int(confirm_rounds)

    def build_order(
        self,
        identity: Identity,
        upload: UploadResult,
        quote: int,
        node: str,
        is_permanent: bool,
    ) -> OrderRequest:
        if isinstance(quote, bool) or not isinstance(quote, int) or quote < 0:
            raise ValueError(f"quote must be a non-negative integer; got {quote!r}")
        if not is_valid_address(node):
            raise ValueError(f"node is not a valid address: {node!r}")

        try:
            params = self.reader.suggested_params()
        except LedgerError as e:
            raise SubmissionError("params_unavailable", e.reason, {"ledger_code": e.code}) from e

        signer = AccountTransactionSigner(sdk_private_key(identity.secret_key))
        payment = PaymentTxn(
            sender=identity.address,
            sp=params,
            receiver=self.contract.address,
            amt=quote,
        )
        atc = AtomicTransactionComposer()
        self.contract.compose(
            atc,
            PLACE_ORDER,
            sender=identity.address,
            params=params,
            signer=signer,
            args=(TransactionWithSigner(payment, signer), upload.cid, int(upload.size), bool(is_permanent), node),
        )
        return OrderRequest(
            composer=atc,
            payment=payment,
            cid=upload.cid,
            size=int(upload.size),
            is_permanent=bool(is_permanent),
            node=node,
        )

    @staticmethod
    def sign_group(order: OrderRequest) -> SignedGroup:
        atc = order.composer
        stxns = tuple(atc.gather_signatures())
        group_id = order.payment.group
        if not group_id or order.app_call.group != group_id:
            raise ValueError("order txns were not assigned a shared group id")
        return SignedGroup(group_id=group_id, stxns=stxns, tx_ids=tuple(atc.tx_ids))

    def submit(
        self,
        identity: Identity,
        upload: UploadResult,
        quote: int,
        node: str,
        is_permanent: bool,
    ) -> Confirmation:
        order = self.build_order(identity, upload, quote, node, is_permanent)
        group = self.sign_group(order)

        try:
            first_id = self.writer.send_transactions(list(group.stxns))
            confirmed_round = self.writer.wait_for_confirmation(first_id, max_rounds=self.confirm_rounds)
        except LedgerError as e:
            log_event(
                logger,
                "order_rejected",
                code=e.code,
                reason=e.reason,
                cid=order.cid,
                amount=order.amount,
                node=node,
            )
            raise SubmissionError(
                "rejected",
                e.reason,
                {"ledger_code": e.code, "cid": order.cid, "amount": order.amount, "tx_ids": list(group.tx_ids)},
            ) from e

        conf = Confirmation(confirmed_round=int(confirmed_round), tx_ids=group.tx_ids, group_id=group.group_id_b64)
        log_event(
            logger,
            "order_confirmed",
            cid=order.cid,
            amount=order.amount,
            node=node,
            round=conf.confirmed_round,
            tx_ids=list(conf.tx_ids),
        )
        return conf
