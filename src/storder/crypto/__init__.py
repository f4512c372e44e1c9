# src/storder/crypto/__init__.py
