"""Payout Ledger - Account Stock Service

Keeps a per-guild stock of account credentials and dispenses them one at a
time to members holding the payout role.

An account is handed out at most once.
"""

__version__ = "0.1.0"
