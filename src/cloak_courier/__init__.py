"""Cloak Courier: one-time disclosure of ledger-held secrets."""

__version__ = "0.1.0"
