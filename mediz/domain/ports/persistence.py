from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol

from ..models import Admin, Plan, PlanAttributes, Subscription, User


class PlanRepository(Protocol):
    """Abstract storage for the plan catalog."""

    def upsert_plan(self, id_kind: str, external_id: str, attributes: PlanAttributes) -> Plan:
        ...

    def get_plan(self, plan_id: int) -> Optional[Plan]:
        ...

    def find_plan_by_external_id(self, external_id: str) -> Optional[Plan]:
        ...

    def list_plans(self, active_only: bool = False) -> List[Plan]:
        ...

    def set_plan_active(self, plan_id: int, active: bool) -> Plan:
        ...


class SubscriptionRepository(Protocol):
    """Abstract storage for the subscription ledger."""

    def upsert_subscription(
        self,
        external_subscription_id: str,
        *,
        user_id: int,
        plan_id: int,
        status: str,
        current_period_start: datetime,
        current_period_end: datetime,
        provider: str,
        event_at: Optional[datetime] = None,
    ) -> tuple[Subscription, bool]:
        """Insert or overwrite by external id. Returns (row, written)."""
        ...

    def update_subscription_status(
        self,
        external_subscription_id: str,
        status: str,
        event_at: Optional[datetime] = None,
    ) -> Optional[Subscription]:
        ...

    def create_subscription(
        self,
        external_subscription_id: str,
        *,
        user_id: int,
        plan_id: int,
        status: str,
        current_period_start: datetime,
        current_period_end: datetime,
        provider: str,
    ) -> Subscription:
        ...

    def update_subscription(self, subscription_id: int, **fields: Any) -> Subscription:
        ...

    def delete_subscription(self, subscription_id: int) -> bool:
        ...

    def get_subscription(self, subscription_id: int) -> Optional[Subscription]:
        ...

    def get_subscription_by_external_id(self, external_subscription_id: str) -> Optional[Subscription]:
        ...

    def list_subscriptions_for_user(self, user_id: int) -> List[Subscription]:
        ...

    def list_all_subscription_ids(self) -> List[int]:
        ...

    def list_entitled_subscriptions(
        self, as_of: datetime, user_id: Optional[int] = None
    ) -> List[Subscription]:
        ...

    def count_entitled_users(self, as_of: datetime) -> int:
        ...

    def entitlement_breakdown(self, as_of: datetime) -> Dict[str, int]:
        ...

    def list_entitled_user_ids(self, as_of: datetime, min_rows: int = 1) -> List[int]:
        ...

    def set_period_end(self, subscription_id: int, current_period_end: datetime) -> None:
        ...


class UserDirectory(Protocol):
    """Resolution of provider customers to internal users."""

    def get_user(self, user_id: int) -> Optional[User]:
        ...

    def find_user_by_stripe_customer(self, customer_id: str) -> Optional[User]:
        ...

    def find_user_by_email(self, email: str) -> Optional[User]:
        ...

    def create_user(
        self,
        email: str,
        name: Optional[str] = None,
        stripe_customer_id: Optional[str] = None,
    ) -> User:
        ...


class AdminRepository(Protocol):
    """Persistence functions related to back-office admin accounts."""

    def get_admin_by_email(self, email: str) -> Optional[Admin]:
        ...

    def get_admin_by_id(self, admin_id: int) -> Optional[Admin]:
        ...

    def create_admin(self, email: str, password_hash: str) -> Admin:
        ...


class PersistenceGateway(
    PlanRepository,
    SubscriptionRepository,
    UserDirectory,
    AdminRepository,
    Protocol,
):
    """Composite gateway combining every persistence concern used by the app."""

    pass
