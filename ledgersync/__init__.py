"""
LedgerSync: order, booking and usage billing into an accounting ledger.

Normalizes e-commerce and scheduling events, reconciles them against the
payment processor and produces invoices, sales receipts and payments.
"""

__version__ = "1.0.0"
