# src/storder/nodes.py
from __future__ import annotations

import logging
from typing import Optional

from algosdk.encoding import is_valid_address

from storder.contract import GET_RANDOM_ORDER_NODE, NODES_BOX, StorageOrderContract
from storder.errors import SimulationError
from storder.order_logging import log_event
from storder.protocols import LedgerReader

logger = logging.getLogger("storder.nodes")


class NodeSelector:
    """Ask the contract's node registry for an order node.

    Selection policy lives in the contract; the result is treated as opaque
    apart from being a well-formed address.
    """

    def __init__(self, *, contract: StorageOrderContract, ledger: LedgerReader, sender: Optional[str] = None) -> None:
        self.contract = contract
        self.ledger = ledger
        self.sender = sender

    def select_node(self, *, sender: Optional[str] = None) -> str:
        node = self.contract.simulate_call(
            self.ledger,
            GET_RANDOM_ORDER_NODE,
            sender=sender or self.sender or self.contract.address,
            boxes=(NODES_BOX,),
        )
        if not isinstance(node, str) or not is_valid_address(node):
            raise SimulationError("bad_return", f"getRandomOrderNode returned {node!r}")

        log_event(logger, "node_selected", node=node)
        return node
