"""
Utility Splitter - Source Package

A shared household ledger: housemates record bills, split them, see who
owes whom and settle up. Data is kept locally, optionally mirrored to a
remote key-value store or a Google Sheet, and can be sealed with a
password.

DESIGN PRINCIPLES:
1. Balances are always derivable from the bills
2. Fail early, fail visibly
3. No silent corrections
4. Locked or unreadable data is never overwritten
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Utility Splitter Team"
