"""Storefront cart mutation protocol and optimistic reconciliation engine."""

__version__ = "0.1.0"
