from fastapi import Depends, Request

from .container import ApplicationContainer


def get_container(request: Request) -> ApplicationContainer:
    container = getattr(request.app.state, "container", None)
    if not container:
        raise RuntimeError("Application container not initialised.")
    return container


def get_settings(container: ApplicationContainer = Depends(get_container)):
    return container.settings


def get_plan_catalog(container: ApplicationContainer = Depends(get_container)):
    return container.plan_catalog


def get_subscription_ledger(container: ApplicationContainer = Depends(get_container)):
    return container.subscription_ledger


def get_reconciler(container: ApplicationContainer = Depends(get_container)):
    return container.reconciler


def get_entitlement_resolver(container: ApplicationContainer = Depends(get_container)):
    return container.entitlement_resolver


def get_admin_auth_service(container: ApplicationContainer = Depends(get_container)):
    return container.admin_auth_service


def get_stripe_service(container: ApplicationContainer = Depends(get_container)):
    return container.stripe_service


def get_hotmart_service(container: ApplicationContainer = Depends(get_container)):
    return container.hotmart_service
