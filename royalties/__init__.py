"""Royalty accrual and payout scheduling engine."""

__version__ = "0.1.0"
