# src/storder/ledger/schemas.py
from __future__ import annotations

"""Pydantic schemas for the algod JSON responses the workflow reads.

Requests and signed txns travel as msgpack through algosdk; only the JSON
answers are checked here. Only the fields the order workflow reads are
declared; anything else the node returns is accepted and ignored.
"""

from typing import List

from pydantic import BaseModel, Field

_CFG = {"extra": "allow", "populate_by_name": True}


class AccountResponse(BaseModel):
    address: str = ""
    amount: int

    model_config = _CFG


class TxnResult(BaseModel):
    logs: List[str] = Field(default_factory=list)

    model_config = _CFG


class SimulateTxnResult(BaseModel):
    txn_result: TxnResult = Field(..., alias="txn-result")

    model_config = _CFG


class SimulateGroup(BaseModel):
    failure_message: str = Field(default="", alias="failure-message")
    failed_at: List[int] = Field(default_factory=list, alias="failed-at")
    txn_results: List[SimulateTxnResult] = Field(..., alias="txn-results")

    model_config = _CFG


class SimulateResponse(BaseModel):
    last_round: int = Field(default=0, alias="last-round")
    txn_groups: List[SimulateGroup] = Field(..., alias="txn-groups", min_length=1)

    model_config = _CFG
