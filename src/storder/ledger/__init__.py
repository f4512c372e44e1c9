# src/storder/ledger/__init__.py
"""
Ledger-facing pieces: the algod-backed node client, its response schemas and
an in-process ledger used by tests. Txn encoding and the ABI come from algosdk.
"""
