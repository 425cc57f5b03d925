"""
Credit Ledger

Append-only ledger, atomic debit enforcement and the per-message cost schedule.
"""

from messaging_engine.ledger.pricing import MESSAGE_COSTS, cost_for
from messaging_engine.ledger.store import LedgerAudit, LedgerStore

__all__ = [
    "LedgerStore",
    "LedgerAudit",
    "MESSAGE_COSTS",
    "cost_for",
]
