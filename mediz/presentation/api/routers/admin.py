from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from ....application.services.admin_auth_service import AdminAuthService
from ....application.services.entitlement import EntitlementResolver
from ....application.services.plan_catalog import PlanCatalog
from ....application.services.subscription_ledger import SubscriptionLedger
from ....core.dependencies import (
    get_admin_auth_service,
    get_entitlement_resolver,
    get_plan_catalog,
    get_subscription_ledger,
)
from ....domain.exceptions import PlanNotFound, SubscriptionNotFound, UserNotFound
from ....domain.models import Admin, Plan, PlanAttributes, Subscription
from ....domain.models.subscription import normalize_status
from ...api.dependencies import require_admin
from ...api.schemas.billing_schemas import (
    AdminLoginRequest,
    EntitlementResponse,
    PlanResponse,
    PlanUpsertRequest,
    PremiumStatsResponse,
    RecalculateRequest,
    RecalculateResponse,
    SubscriptionCreateRequest,
    SubscriptionResponse,
    SubscriptionUpdateRequest,
)

router = APIRouter(prefix="/api/admin", tags=["Billing Administration"])

_NOT_FOUND = (PlanNotFound, SubscriptionNotFound, UserNotFound)


@router.post("/login")
def admin_login(
    payload: AdminLoginRequest,
    admin_auth: AdminAuthService = Depends(get_admin_auth_service),
) -> dict:
    token = admin_auth.authenticate(payload.email, payload.password)
    return {"access_token": token, "token_type": "bearer"}


@router.get("/me")
def admin_me(current_admin: Admin = Depends(require_admin)) -> dict:
    return {
        "id": current_admin.id,
        "email": current_admin.email,
        "is_active": current_admin.is_active,
        "created_at": current_admin.created_at.replace(microsecond=0).isoformat(),
        "updated_at": current_admin.updated_at.replace(microsecond=0).isoformat(),
    }


# ============ PLANS ============

@router.get("/plans", response_model=List[PlanResponse])
def list_plans(
    active_only: bool = False,
    provider: Optional[str] = None,
    _: Admin = Depends(require_admin),
    catalog: PlanCatalog = Depends(get_plan_catalog),
) -> List[PlanResponse]:
    return [_serialize_plan(plan) for plan in catalog.list_plans(active_only=active_only, provider=provider)]


@router.post("/plans", response_model=PlanResponse)
def upsert_plan(
    payload: PlanUpsertRequest,
    _: Admin = Depends(require_admin),
    catalog: PlanCatalog = Depends(get_plan_catalog),
) -> PlanResponse:
    """Create a plan or correct the one already registered under the identifier."""
    try:
        attributes = PlanAttributes(
            name=payload.name,
            currency=payload.currency,
            interval=payload.interval,
            interval_count=payload.interval_count,
            amount=payload.amount,
            active=payload.active,
            trial_period_days=payload.trial_period_days,
        )
        plan = catalog.upsert_plan(payload.external_id, attributes, id_kind=payload.id_kind)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return _serialize_plan(plan)


@router.post("/plans/{plan_id}/deactivate", response_model=PlanResponse)
def deactivate_plan(
    plan_id: int,
    _: Admin = Depends(require_admin),
    catalog: PlanCatalog = Depends(get_plan_catalog),
) -> PlanResponse:
    try:
        return _serialize_plan(catalog.deactivate_plan(plan_id))
    except PlanNotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc


# ============ SUBSCRIPTIONS ============

@router.get("/subscriptions", response_model=List[SubscriptionResponse])
def list_subscriptions(
    user_id: int = Query(..., description="Owner of the subscriptions"),
    _: Admin = Depends(require_admin),
    ledger: SubscriptionLedger = Depends(get_subscription_ledger),
) -> List[SubscriptionResponse]:
    """Full history for a user, including lapsed and cancelled rows."""
    now = datetime.now(timezone.utc)
    return [_serialize_subscription(sub, now) for sub in ledger.list_subscriptions_for_user(user_id)]


@router.post(
    "/subscriptions",
    response_model=SubscriptionResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_subscription(
    payload: SubscriptionCreateRequest,
    _: Admin = Depends(require_admin),
    ledger: SubscriptionLedger = Depends(get_subscription_ledger),
) -> SubscriptionResponse:
    now = datetime.now(timezone.utc)
    try:
        subscription = ledger.create_manual_subscription(
            user_id=payload.user_id,
            plan_id=payload.plan_id,
            status=normalize_status(payload.status),
            current_period_start=payload.current_period_start or now,
            current_period_end=payload.current_period_end,
        )
    except _NOT_FOUND as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return _serialize_subscription(subscription, now)


@router.put("/subscriptions/{subscription_id}", response_model=SubscriptionResponse)
def update_subscription(
    subscription_id: int,
    payload: SubscriptionUpdateRequest,
    _: Admin = Depends(require_admin),
    ledger: SubscriptionLedger = Depends(get_subscription_ledger),
) -> SubscriptionResponse:
    try:
        subscription = ledger.update_subscription(
            subscription_id,
            plan_id=payload.plan_id,
            status=normalize_status(payload.status) if payload.status else None,
            current_period_start=payload.current_period_start,
            current_period_end=payload.current_period_end,
        )
    except _NOT_FOUND as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return _serialize_subscription(subscription, datetime.now(timezone.utc))


@router.delete("/subscriptions/{subscription_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_subscription(
    subscription_id: int,
    _: Admin = Depends(require_admin),
    ledger: SubscriptionLedger = Depends(get_subscription_ledger),
) -> Response:
    try:
        ledger.delete_subscription(subscription_id)
    except SubscriptionNotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/subscriptions/recalculate", response_model=RecalculateResponse)
def recalculate_periods(
    payload: Optional[RecalculateRequest] = None,
    _: Admin = Depends(require_admin),
    ledger: SubscriptionLedger = Depends(get_subscription_ledger),
) -> RecalculateResponse:
    """Repair stored period ends that drifted from their plan's interval."""
    if payload and payload.user_id is not None:
        summary = ledger.recalculate_user_periods(payload.user_id)
    else:
        summary = ledger.recalculate_all_periods()
    return RecalculateResponse(
        total=summary.total,
        updated_count=summary.updated_count,
        updated_ids=list(summary.updated_ids),
    )


# ============ ENTITLEMENT ============

@router.get("/users/{user_id}/entitlement", response_model=EntitlementResponse)
def user_entitlement(
    user_id: int,
    _: Admin = Depends(require_admin),
    resolver: EntitlementResolver = Depends(get_entitlement_resolver),
    ledger: SubscriptionLedger = Depends(get_subscription_ledger),
) -> EntitlementResponse:
    now = datetime.now(timezone.utc)
    active = ledger.list_active_subscriptions_for_user(user_id, now)
    return EntitlementResponse(
        user_id=user_id,
        is_premium=resolver.is_premium(user_id, now),
        as_of=now,
        subscriptions=[_serialize_subscription(sub, now) for sub in active],
    )


@router.get("/stats/premium", response_model=PremiumStatsResponse)
def premium_stats(
    _: Admin = Depends(require_admin),
    resolver: EntitlementResolver = Depends(get_entitlement_resolver),
) -> PremiumStatsResponse:
    report = resolver.premium_count_report()
    return PremiumStatsResponse(
        as_of=report.as_of,
        premium_users=report.premium_users,
        entitled_subscriptions=report.entitled_subscriptions,
        users_with_multiple=report.users_with_multiple,
        consistent=report.consistent,
    )


def _serialize_plan(plan: Plan) -> PlanResponse:
    return PlanResponse(
        id=plan.id,
        name=plan.name,
        provider=plan.provider,
        currency=plan.currency,
        interval=plan.interval.value,
        interval_count=plan.interval_count,
        amount=plan.amount,
        active=plan.active,
        stripe_price_id=plan.stripe_price_id,
        hotmart_offer_key=plan.hotmart_offer_key,
        hotmart_id=plan.hotmart_id,
        trial_period_days=plan.trial_period_days,
    )


def _serialize_subscription(subscription: Subscription, as_of: datetime) -> SubscriptionResponse:
    return SubscriptionResponse(
        id=subscription.id,
        user_id=subscription.user_id,
        plan_id=subscription.plan_id,
        external_subscription_id=subscription.external_subscription_id,
        provider=subscription.provider,
        status=subscription.status,
        current_period_start=subscription.current_period_start,
        current_period_end=subscription.current_period_end,
        is_entitled=subscription.is_entitled(as_of),
        created_at=subscription.created_at,
        updated_at=subscription.updated_at,
    )
