"""Service layer for royalty accrual and payouts."""
