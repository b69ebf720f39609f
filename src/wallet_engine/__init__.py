"""Wallet payment session engine.

Collects mobile-money payments against invoices:
- Session initiation (new or reused gateway sessions)
- Sequential status polling under a hard time ceiling
- Idempotent, atomic invoice settlement with receipt allocation
"""

__version__ = "0.1.0"
