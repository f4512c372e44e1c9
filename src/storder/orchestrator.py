# src/storder/orchestrator.py
from __future__ import annotations

"""
Order workflow.

  IDLE -> IDENTITY_RESOLVED -> CONTENT_PUBLISHED -> PRICE_QUOTED
       -> NODE_SELECTED -> ORDER_SUBMITTED

Any step can move the run to FAILED. Steps are strictly sequential because
each one consumes the previous step's output:
  - identity signs the gateway credential and pays the escrow
  - the published size feeds the quote and the order (same value for both)
  - the quote is the escrow amount
  - the node is the order's merchant

Nothing is retried here. A failure after publishing leaves the content on the
gateway; the OrderRun keeps the UploadResult so the caller can see it.
"""

import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from storder.contract import StorageOrderContract
from storder.errors import OrderError
from storder.models import Confirmation, Identity, UploadResult
from storder.nodes import NodeSelector
from storder.oracle import PriceOracleClient
from storder.order_logging import log_event
from storder.protocols import ContentPublisher, IdentityProvider, LedgerReader, LedgerWriter
from storder.submitter import OrderSubmitter

Json = Dict[str, Any]

logger = logging.getLogger("storder.orchestrator")


class OrderState(str, enum.Enum):
    IDLE = "idle"
    IDENTITY_RESOLVED = "identity_resolved"
    CONTENT_PUBLISHED = "content_published"
    PRICE_QUOTED = "price_quoted"
    NODE_SELECTED = "node_selected"
    ORDER_SUBMITTED = "order_submitted"
    FAILED = "failed"


_NEXT: Dict[OrderState, OrderState] = {
    OrderState.IDLE: OrderState.IDENTITY_RESOLVED,
    OrderState.IDENTITY_RESOLVED: OrderState.CONTENT_PUBLISHED,
    OrderState.CONTENT_PUBLISHED: OrderState.PRICE_QUOTED,
    OrderState.PRICE_QUOTED: OrderState.NODE_SELECTED,
    OrderState.NODE_SELECTED: OrderState.ORDER_SUBMITTED,
}

TERMINAL = frozenset({OrderState.ORDER_SUBMITTED, OrderState.FAILED})


@dataclass
class OrderRun:
    filename: str
    is_permanent: bool
    state: OrderState = OrderState.IDLE
    history: List[OrderState] = field(default_factory=lambda: [OrderState.IDLE])

    address: str = ""
    upload: Optional[UploadResult] = None
    quote: Optional[int] = None
    node: Optional[str] = None
    confirmation: Optional[Confirmation] = None

    failed_from: Optional[OrderState] = None
    failure_code: str = ""
    failure_reason: str = ""

    def advance(self, to: OrderState) -> None:
        if self.state in TERMINAL:
            raise RuntimeError(f"run already finished in {self.state.value}")
        if _NEXT.get(self.state) != to:
            raise RuntimeError(f"illegal transition {self.state.value} -> {to.value}")
        self.state = to
        self.history.append(to)

    def fail(self, code: str, reason: str) -> None:
        if self.state in TERMINAL:
            raise RuntimeError(f"run already finished in {self.state.value}")
        self.failed_from = self.state
        self.failure_code = code
        self.failure_reason = reason
        self.state = OrderState.FAILED
        self.history.append(OrderState.FAILED)

    def to_json(self) -> Json:
        out: Json = {
            "state": self.state.value,
            "history": [s.value for s in self.history],
            "filename": self.filename,
            "is_permanent": self.is_permanent,
            "address": self.address,
            "cid": self.upload.cid if self.upload else None,
            "size": self.upload.size if self.upload else None,
            "quote": self.quote,
            "node": self.node,
            "confirmation": self.confirmation.to_json() if self.confirmation else None,
        }
        if self.state is OrderState.FAILED:
            out["failed_from"] = self.failed_from.value if self.failed_from else None
            out["failure"] = {"code": self.failure_code, "reason": self.failure_reason}
        return out


class Orchestrator:
    """Sequence identity -> publish -> quote -> node -> submit for one order.

    Collaborators are capability interfaces, so tests can swap any of them:
      identity_provider  signing identity (keystore in production)
      publisher          content gateway
      reader / writer    ledger simulate + broadcast
    """

    def __init__(
        self,
        *,
        identity_provider: IdentityProvider,
        publisher: ContentPublisher,
        reader: LedgerReader,
        writer: LedgerWriter,
        contract: StorageOrderContract,
        confirm_rounds: int = 5,
    ) -> None:
        self.identity_provider = identity_provider
        self.publisher = publisher
        self.contract = contract
        self.oracle = PriceOracleClient(contract=contract, ledger=reader)
        self.selector = NodeSelector(contract=contract, ledger=reader)
        self.submitter = OrderSubmitter(contract=contract, reader=reader, writer=writer, confirm_rounds=confirm_rounds)
        self.last_run: Optional[OrderRun] = None

    def _step(self, run: OrderRun, to: OrderState, **fields: Any) -> None:
        run.advance(to)
        log_event(logger, "order_state", state=to.value, address=run.address, **fields)

    def run(self, data: bytes, filename: str, *, is_permanent: bool = False) -> OrderRun:
        run = OrderRun(filename=filename, is_permanent=bool(is_permanent))
        self.last_run = run

        try:
            identity: Identity = self.identity_provider.resolve()
            run.address = identity.address
            self._step(run, OrderState.IDENTITY_RESOLVED)

            upload = self.publisher.publish(data, filename, identity=identity)
            run.upload = upload
            self._step(run, OrderState.CONTENT_PUBLISHED, cid=upload.cid, size=upload.size)

            quote = self.oracle.quote(upload.size, run.is_permanent, sender=identity.address)
            run.quote = quote
            self._step(run, OrderState.PRICE_QUOTED, size=upload.size, amount=quote)

            node = self.selector.select_node(sender=identity.address)
            run.node = node
            self._step(run, OrderState.NODE_SELECTED, node=node)

            conf = self.submitter.submit(identity, upload, quote, node, run.is_permanent)
            run.confirmation = conf
            self._step(
                run,
                OrderState.ORDER_SUBMITTED,
                cid=upload.cid,
                amount=quote,
                node=node,
                round=conf.confirmed_round,
                tx_ids=list(conf.tx_ids),
            )
        except OrderError as e:
            run.fail(e.code, e.reason)
            log_event(
                logger,
                "order_failed",
                state=run.failed_from.value if run.failed_from else None,
                error=type(e).__name__,
                code=e.code,
                reason=e.reason,
                cid=run.upload.cid if run.upload else None,
            )
            raise
        except Exception as e:
            # anything outside the OrderError family still ends the run as FAILED
            if run.state not in TERMINAL:
                run.fail("internal", str(e) or type(e).__name__)
            log_event(
                logger,
                "order_failed",
                state=run.failed_from.value if run.failed_from else None,
                error=type(e).__name__,
                code="internal",
                reason=str(e),
                cid=run.upload.cid if run.upload else None,
            )
            raise

        return run
