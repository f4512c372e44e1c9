# src/storder/oracle.py
from __future__ import annotations

import logging
from typing import Optional

from storder.contract import GET_PRICE, StorageOrderContract
from storder.errors import SimulationError
from storder.order_logging import log_event
from storder.protocols import LedgerReader

logger = logging.getLogger("storder.oracle")


class PriceOracleClient:
    """Quote storage prices via a simulated getPrice call.

    The quote is a point-in-time reading of contract state. It is not cached:
    every call re-simulates, and the order that follows must be built from the
    value returned here.
    """

    def __init__(self, *, contract: StorageOrderContract, ledger: LedgerReader, sender: Optional[str] = None) -> None:
        self.contract = contract
        self.ledger = ledger
        self.sender = sender

    def quote(self, size: int, is_permanent: bool, *, sender: Optional[str] = None) -> int:
        if isinstance(size, bool) or not isinstance(size, int) or size <= 0:
            raise ValueError(f"size must be a positive integer; got {size!r}")

        who = sender or self.sender or self.contract.address
        amount = self.contract.simulate_call(
            self.ledger,
            GET_PRICE,
            sender=who,
            args=(size, bool(is_permanent)),
        )
        if not isinstance(amount, int) or amount < 0:
            raise SimulationError("bad_return", f"getPrice returned {amount!r}")

        log_event(logger, "price_quoted", size=size, is_permanent=bool(is_permanent), amount=amount)
        return amount
