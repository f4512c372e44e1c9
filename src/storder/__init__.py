# src/storder/__init__.py
"""
Storage order orchestration.

Publishes a file to a content-addressed gateway, quotes the on-chain storage
price, picks a storage node from the contract registry and submits the escrow
payment + placeOrder call as one atomic group.
"""

__version__ = "0.4.0"
