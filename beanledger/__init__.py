"""
beanledger - Plaintext Double-Entry Ledger Engine

A local engine that maintains a double-entry ledger stored as a set of
linked plaintext files (main.bean, accounts.bean and one file per month).

DESIGN PRINCIPLES:
1. The filesystem is the database
2. Fail early, fail visibly - validate before any file is touched
3. No silent corrections - malformed text is reported, never rewritten
4. Every write is atomic and re-parsed before it is committed
5. Every mutation is auditable
"""

__version__ = "1.0.0"
__author__ = "beanledger developers"
