"""Shared exception hierarchy for royalty services."""

# ── Input ─────────────────────────────────────────────────────────────────────


class ValidationError(Exception):
    """Input rejected synchronously; nothing was persisted."""


class NoEligiblePayeesError(ValidationError):
    """A payout batch was requested but no payee qualifies."""

    def __init__(self, message: str = "No eligible payees for payout.") -> None:
        super().__init__(message)


# ── State ─────────────────────────────────────────────────────────────────────


class ConflictError(Exception):
    """Request conflicts with the current batch state; state left unchanged."""


class InvalidTransitionError(ConflictError):
    """A status change not allowed by the transition table."""


class DataIntegrityError(Exception):
    """A ledger or payout record write failed after money moved remotely."""

    def __init__(self, message: str, entries_settled: int = 0) -> None:
        super().__init__(message)
        self.entries_settled = entries_settled


# ── Gateway ───────────────────────────────────────────────────────────────────


class GatewayError(Exception):
    """Base exception for payment processor errors."""


class RemoteError(GatewayError):
    """Transport or API failure at the payment processor."""


class BelowMinimumError(GatewayError):
    """Payout amount is below the processor's minimum."""
