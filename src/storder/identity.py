# src/storder/identity.py
from __future__ import annotations

import logging

from storder.errors import NoFundsError
from storder.keystore import SqliteKeystore
from storder.models import Identity
from storder.order_logging import log_event
from storder.protocols import LedgerReader

logger = logging.getLogger("storder.identity")


class KeystoreIdentityProvider:
    """Resolve the uploader identity from the local keystore.

    - Creates the named key on first use; never funds it.
    - Same wallet name -> same address across runs.
    - Fails with NoFundsError when the ledger reports a zero balance.
    """

    def __init__(self, *, keystore: SqliteKeystore, ledger: LedgerReader, name: str = "uploader") -> None:
        self.keystore = keystore
        self.ledger = ledger
        self.name = name

    def resolve(self) -> Identity:
        self.keystore.init_schema()
        rec = self.keystore.get_or_create(self.name)

        balance = int(self.ledger.account_balance(rec.address))

        if balance <= 0:
            raise NoFundsError(
                "no_funds",
                f"Account {rec.address} has no funds. Please fund it and try again.",
                {"address": rec.address, "wallet": self.name},
            )

        log_event(logger, "identity_resolved", wallet=self.name, address=rec.address, balance=balance)
        return Identity(address=rec.address, secret_key=rec.secret_key, balance=balance)
