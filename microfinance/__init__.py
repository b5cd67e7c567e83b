"""
Microfinance Loan Management Core

Loan lifecycle and repayment reconciliation for a microfinance lender:
client registration, flat-rate loan valuation, disbursement, repayments,
interest revisions, payment alerts and a hash-chained audit trail.
All monetary values use Decimal.
"""

__version__ = "1.0.0"
