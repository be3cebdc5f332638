from dataclasses import dataclass

from ..application.services.admin_auth_service import AdminAuthService
from ..application.services.entitlement import EntitlementResolver
from ..application.services.plan_catalog import PlanCatalog
from ..application.services.reconciler import Reconciler
from ..application.services.subscription_ledger import SubscriptionLedger
from .config import Settings
from ..domain.ports.persistence import PersistenceGateway
from ..services.hotmart_service import HotmartService
from ..services.stripe_service import StripeService


@dataclass(slots=True)
class ApplicationContainer:
    """Dependency registry shared across the FastAPI application lifecycle."""

    settings: Settings
    persistence: PersistenceGateway
    plan_catalog: PlanCatalog
    subscription_ledger: SubscriptionLedger
    reconciler: Reconciler
    entitlement_resolver: EntitlementResolver
    admin_auth_service: AdminAuthService
    stripe_service: StripeService
    hotmart_service: HotmartService


def build_container(settings: Settings, persistence: PersistenceGateway) -> ApplicationContainer:
    plan_catalog = PlanCatalog(persistence)
    subscription_ledger = SubscriptionLedger(persistence)
    reconciler = Reconciler(
        plan_catalog,
        subscription_ledger,
        persistence,
        enforce_event_ordering=settings.enforce_event_ordering,
    )
    return ApplicationContainer(
        settings=settings,
        persistence=persistence,
        plan_catalog=plan_catalog,
        subscription_ledger=subscription_ledger,
        reconciler=reconciler,
        entitlement_resolver=EntitlementResolver(subscription_ledger, persistence),
        admin_auth_service=AdminAuthService(
            persistence=persistence,
            secret_key=settings.admin_token_secret,
            token_exp_minutes=settings.admin_token_exp_minutes,
        ),
        stripe_service=StripeService(settings.stripe_secret_key, settings.stripe_webhook_secret),
        hotmart_service=HotmartService(
            persistence,
            plan_catalog,
            hottok=settings.hotmart_hottok,
            product_id=settings.hotmart_product_id,
            auto_provision_users=settings.hotmart_auto_provision_users,
        ),
    )
