"""Enumeration types for the royalty payout engine."""

from enum import Enum


class RoyaltyStatus(str, Enum):
    """Lifecycle status of a royalty ledger entry."""

    PENDING = "pending"
    PROCESSING = "processing"
    PAID = "paid"
    FAILED = "failed"


class AccountStatus(str, Enum):
    """Onboarding status of a payee's remote payment account."""

    NONE = "none"
    CREATED = "created"
    PENDING_VERIFICATION = "pending_verification"
    REQUIRES_INFORMATION = "requires_information"
    VERIFIED = "verified"


class BatchStatus(str, Enum):
    """Status of a payout batch."""

    SCHEDULED = "scheduled"
    PROCESSING = "processing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (BatchStatus.COMPLETED, BatchStatus.CANCELLED)


class BatchTrigger(str, Enum):
    """What created a payout batch."""

    PERIODIC = "periodic"
    MANUAL = "manual"


class PayoutStatus(str, Enum):
    """Mirrors the processor's payout status."""

    PENDING = "pending"
    IN_TRANSIT = "in_transit"
    PAID = "paid"
    FAILED = "failed"
    CANCELED = "canceled"


class JobStatus(str, Enum):
    """Status of a durable scheduled job."""

    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"
    CANCELLED = "cancelled"


class JobType(str, Enum):
    """Known scheduled job types."""

    PROCESS_PAYOUT_BATCH = "process_payout_batch"


class NotificationKind(str, Enum):
    """Notification templates emitted by the payout workflow."""

    BATCH_SCHEDULED = "batch_scheduled"
    BATCH_COMPLETED = "batch_completed"
    PAYOUT_CONFIRMATION = "payout_confirmation"


class NotificationStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
