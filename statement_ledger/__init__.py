"""
Statement Ledger - Source Package

Imports bank and credit card statements (OFX/QFX) into a double-entry
ledger for personal finance.

DESIGN PRINCIPLES:
1. Rules suggest → Human reviews → Ledger verifies
2. Fail early, fail visibly, one file or transaction at a time
3. No silent corrections: an unbalanced entry is rejected, never nudged
4. Every step must be auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Statement Ledger Team"
