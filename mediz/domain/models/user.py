"""Identity records the billing core needs: app users and back-office admins."""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(slots=True)
class User:
    """An application user as seen by billing: resolvable by Stripe customer or email."""

    id: int
    email: str
    name: Optional[str]
    stripe_customer_id: Optional[str]
    created_at: datetime


@dataclass(slots=True)
class Admin:
    id: int
    email: str
    password_hash: str
    is_active: bool
    created_at: datetime
    updated_at: datetime
