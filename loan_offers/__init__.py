"""
Loan Offers Core

Peer-to-peer loan offer lifecycle, deterministic repayment schedules and
payment reconciliation. All financial math uses Decimal.
"""

__version__ = "1.0.0"
