"""Domain models for the meDIZ billing service."""

from .plan import EXTERNAL_ID_KINDS, Plan, PlanAttributes, PlanInterval
from .subscription import ENTITLED_STATUSES, Subscription
from .user import Admin, User

__all__ = [
    "Admin",
    "ENTITLED_STATUSES",
    "EXTERNAL_ID_KINDS",
    "Plan",
    "PlanAttributes",
    "PlanInterval",
    "Subscription",
    "User",
]
