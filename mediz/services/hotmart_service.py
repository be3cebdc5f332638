"""Hotmart webhook adapter: authenticity check and payload normalization."""

from __future__ import annotations

import hmac
import logging
import sqlite3
from typing import Optional, Union

from ..application.services.plan_catalog import PlanCatalog
from ..domain.events import PROVIDER_HOTMART, SubscriptionCancelledEvent, SubscriptionEvent
from ..domain.exceptions import PlanNotFound, ReconciliationFailed
from ..domain.models.subscription import HOTMART_ID_PREFIX, STATUS_ACTIVE, STATUS_CANCELED
from ..domain.ports.persistence import UserDirectory
from ..presentation.api.schemas.hotmart_schemas import HotmartPayload

logger = logging.getLogger(__name__)

APPROVAL_EVENTS = frozenset({"PURCHASE_APPROVED", "PURCHASE_COMPLETE"})
APPROVED_PURCHASE_STATUSES = frozenset({"APPROVED", "COMPLETE", "COMPLETED"})
CANCELLATION_EVENTS = frozenset(
    {
        "PURCHASE_CANCELED",
        "PURCHASE_REFUNDED",
        "PURCHASE_CHARGEBACK",
        "SUBSCRIPTION_CANCELLATION",
    }
)


def _ms_to_seconds(value: Optional[int]) -> Optional[float]:
    return value / 1000 if value is not None else None


class HotmartService:
    """Turns verified Hotmart postbacks into reconciler events."""

    def __init__(
        self,
        users: UserDirectory,
        catalog: PlanCatalog,
        hottok: Optional[str],
        product_id: Optional[str] = None,
        auto_provision_users: bool = True,
    ) -> None:
        self._users = users
        self._catalog = catalog
        self._hottok = hottok
        self._product_id = product_id
        self._auto_provision_users = auto_provision_users

    @property
    def configured(self) -> bool:
        return bool(self._hottok)

    def verify(self, hottok: Optional[str]) -> bool:
        if not self._hottok or not hottok:
            return False
        return hmac.compare_digest(self._hottok.encode("utf-8"), hottok.encode("utf-8"))

    @staticmethod
    def external_subscription_id(payload: HotmartPayload) -> str:
        return f"{HOTMART_ID_PREFIX}{payload.data.purchase.transaction or payload.id}"

    def to_reconciler_event(
        self, payload: HotmartPayload
    ) -> Optional[Union[SubscriptionEvent, SubscriptionCancelledEvent]]:
        """Return the event to reconcile, or None when the postback is not ours to handle."""
        incoming_product = str(payload.data.product.id)
        if self._product_id and incoming_product != self._product_id:
            logger.info("Ignoring Hotmart %s for product %s", payload.event, incoming_product)
            return None

        event_name = (payload.event or "").upper()
        purchase = payload.data.purchase
        created = _ms_to_seconds(payload.creation_date)

        if event_name in CANCELLATION_EVENTS:
            if not purchase.transaction:
                logger.info("Ignoring Hotmart %s without a transaction id", event_name)
                return None
            return SubscriptionCancelledEvent(
                external_subscription_id=self.external_subscription_id(payload),
                raw_status=STATUS_CANCELED,
                provider=PROVIDER_HOTMART,
                event_created_epoch_seconds=created,
            )

        approved = event_name in APPROVAL_EVENTS or (
            (purchase.status or "").upper() in APPROVED_PURCHASE_STATUSES
        )
        if not approved:
            logger.info("Ignoring Hotmart %s (purchase status %s)", event_name, purchase.status)
            return None

        period_start = (
            _ms_to_seconds(purchase.approved_date)
            or _ms_to_seconds(purchase.order_date)
            or created
        )
        if period_start is None:
            logger.warning("Ignoring Hotmart %s without any purchase date", payload.id)
            return None

        email = payload.data.buyer.email.strip().lower()
        plan_key = self._plan_key(payload)
        self._ensure_buyer(payload, email, plan_key)

        return SubscriptionEvent(
            external_subscription_id=self.external_subscription_id(payload),
            external_plan_id=plan_key,
            user_external_customer_id=email,
            raw_status=STATUS_ACTIVE,
            period_start_epoch_seconds=period_start,
            period_end_epoch_seconds=None,
            cancel_at_period_end=False,
            provider=PROVIDER_HOTMART,
            event_created_epoch_seconds=created,
        )

    @staticmethod
    def _plan_key(payload: HotmartPayload) -> str:
        offer = payload.data.purchase.offer
        if offer and offer.code:
            return offer.code
        subscription = payload.data.subscription
        if subscription and subscription.plan and subscription.plan.id is not None:
            return str(subscription.plan.id)
        return ""

    def _ensure_buyer(self, payload: HotmartPayload, email: str, plan_key: str) -> None:
        """Create the buyer's account unless the purchase will be skipped anyway."""
        if not self._auto_provision_users or self._users.find_user_by_email(email):
            return
        try:
            self._catalog.find_plan_by_external_id(plan_key)
        except PlanNotFound:
            return
        try:
            user = self._users.create_user(email=email, name=payload.data.buyer.display_name)
        except sqlite3.IntegrityError as exc:
            # A concurrent delivery of the same purchase created the buyer first.
            if self._users.find_user_by_email(email) is None:
                raise ReconciliationFailed(f"Could not provision Hotmart buyer {email}", cause=exc) from exc
            return
        except sqlite3.Error as exc:
            logger.exception("User store failed while provisioning Hotmart buyer %s", email)
            raise ReconciliationFailed(f"Could not provision Hotmart buyer {email}", cause=exc) from exc
        logger.info("Provisioned user %s for Hotmart purchase %s", user.id, payload.id)
