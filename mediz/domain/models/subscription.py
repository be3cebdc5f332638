"""Subscription domain model linking users to billing plans."""

from datetime import datetime, timezone
from typing import Optional

from ..periods import ensure_utc

STATUS_ACTIVE = "active"
STATUS_TRIALING = "trialing"
STATUS_PAST_DUE = "past_due"
STATUS_CANCEL_AT_PERIOD_END = "cancel_at_period_end"
STATUS_CANCELED = "canceled"

# The only statuses that grant premium access. Persistence renders its SQL
# filter from this same tuple.
ENTITLED_STATUSES = (STATUS_ACTIVE, STATUS_TRIALING, STATUS_CANCEL_AT_PERIOD_END)

ADMIN_ID_PREFIX = "sub_admin_"
HOTMART_ID_PREFIX = "hotmart_"


def normalize_status(raw_status: Optional[str]) -> str:
    """Lower-case a provider status; providers disagree on casing."""
    return (raw_status or "").strip().lower()


def grants_entitlement(status: Optional[str], period_end: datetime, as_of: datetime) -> bool:
    return normalize_status(status) in ENTITLED_STATUSES and ensure_utc(period_end) >= ensure_utc(as_of)


class Subscription:
    """
    Subscription entity representing one user's billing relationship to a plan.

    Attributes:
        id: Unique identifier
        user_id: Reference to the owning user
        plan_id: Reference to Plan
        external_subscription_id: Provider subscription ID (idempotency key)
        provider: stripe, hotmart or admin
        status: Lower-cased subscription status
        current_period_start: Start of current billing period (UTC)
        current_period_end: End of current billing period (UTC)
        last_event_at: Generation time of the last provider event applied
        created_at: Row creation timestamp
        updated_at: Last update timestamp
    """

    def __init__(
        self,
        id: int,
        user_id: int,
        plan_id: int,
        external_subscription_id: str,
        status: str,
        current_period_start: datetime,
        current_period_end: datetime,
        provider: str = "stripe",
        last_event_at: Optional[datetime] = None,
        created_at: Optional[datetime] = None,
        updated_at: Optional[datetime] = None,
    ):
        self.id = id
        self.user_id = user_id
        self.plan_id = plan_id
        self.external_subscription_id = external_subscription_id
        self.provider = provider
        self.status = normalize_status(status)
        self.current_period_start = ensure_utc(current_period_start)
        self.current_period_end = ensure_utc(current_period_end)
        self.last_event_at = ensure_utc(last_event_at) if last_event_at else None
        self.created_at = created_at or datetime.now(timezone.utc)
        self.updated_at = updated_at or datetime.now(timezone.utc)

    def is_entitled(self, as_of: Optional[datetime] = None) -> bool:
        """Check whether this row alone grants premium access at ``as_of``."""
        return grants_entitlement(
            self.status, self.current_period_end, as_of or datetime.now(timezone.utc)
        )

    def __repr__(self) -> str:
        return (
            f"<Subscription id={self.id} user_id={self.user_id} "
            f"external_id={self.external_subscription_id} status={self.status}>"
        )
