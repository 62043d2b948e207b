"""
Refusal penalties and per-category blacklist.
"""

from .ledger import PenaltyLedger

__all__ = ["PenaltyLedger"]
