"""
General Ledger & Period-Close Engine

Double-entry posting kernel with a chart of accounts, per-currency balanced
journal entries, fixed-point Decimal balances, financial statements and an
irreversible period-closing protocol.
"""

__version__ = "1.0.0"
