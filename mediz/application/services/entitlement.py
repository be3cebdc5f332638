"""Single source of truth for "is this user premium right now"."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional

from ...domain.models import User
from ...domain.periods import ensure_utc
from ...domain.ports.persistence import PersistenceGateway
from .subscription_ledger import SubscriptionLedger


@dataclass(slots=True)
class PremiumCountReport:
    as_of: datetime
    premium_users: int
    entitled_subscriptions: int
    users_with_multiple: int

    @property
    def consistent(self) -> bool:
        """True when no user holds more than one qualifying subscription."""
        return self.premium_users == self.entitled_subscriptions


class EntitlementResolver:
    """Derives premium access from the ledger. Callers must not re-derive it."""

    def __init__(self, ledger: SubscriptionLedger, persistence: PersistenceGateway) -> None:
        self._ledger = ledger
        self._persistence = persistence

    def is_premium(self, user_id: int, as_of: Optional[datetime] = None) -> bool:
        return bool(self._ledger.list_active_subscriptions_for_user(user_id, as_of))

    def count_premium_users(self, as_of: Optional[datetime] = None) -> int:
        """Count distinct users, not qualifying subscription rows."""
        return self._persistence.count_entitled_users(self._as_of(as_of))

    def list_premium_users(self, as_of: Optional[datetime] = None) -> List[User]:
        users = []
        for user_id in self._persistence.list_entitled_user_ids(self._as_of(as_of)):
            user = self._persistence.get_user(user_id)
            if user is not None:
                users.append(user)
        return users

    def premium_count_report(self, as_of: Optional[datetime] = None) -> PremiumCountReport:
        as_of = self._as_of(as_of)
        breakdown = self._persistence.entitlement_breakdown(as_of)
        return PremiumCountReport(as_of=as_of, **breakdown)

    @staticmethod
    def _as_of(as_of: Optional[datetime]) -> datetime:
        return ensure_utc(as_of) if as_of else datetime.now(timezone.utc)
