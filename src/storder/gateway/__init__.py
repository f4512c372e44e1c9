# src/storder/gateway/__init__.py
"""
Content-publishing gateway adapter (IPFS-compatible /api/v0/add).
"""
