"""Marketplace integrity core: identity resolution and the commission ledger."""

__version__ = "1.0.0"
