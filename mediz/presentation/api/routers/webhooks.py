"""Billing provider webhook endpoints."""

import json
import logging
from typing import Any, Dict, Optional

import stripe
from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool

from ....application.services.reconciler import Reconciler
from ....core.dependencies import get_hotmart_service, get_reconciler, get_stripe_service
from ....domain.events import ReconciliationOutcome
from ....domain.exceptions import ReconciliationFailed
from ....services.hotmart_service import HotmartService
from ....services.stripe_service import StripeService
from ...api.schemas.hotmart_schemas import HotmartPayload

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Billing Webhooks"])

_IGNORED = {"received": True, "ignored": True}


def _outcome_body(outcome: ReconciliationOutcome) -> Dict[str, Any]:
    body: Dict[str, Any] = {"received": True, "result": outcome.result}
    if outcome.reason:
        body["reason"] = outcome.reason
    if outcome.subscription is not None:
        body["subscription_id"] = outcome.subscription.id
    return body


async def _reconcile(reconciler: Reconciler, event) -> ReconciliationOutcome:
    try:
        return await run_in_threadpool(reconciler.apply, event)
    except ReconciliationFailed as exc:
        logger.error("Reconciliation of %s failed: %s", event.external_subscription_id, exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Reconciliation failed"
        ) from exc


@router.post("/api/stripe/webhook", include_in_schema=False)
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(default=None, alias="Stripe-Signature"),
    stripe_service: StripeService = Depends(get_stripe_service),
    reconciler: Reconciler = Depends(get_reconciler),
) -> Dict[str, Any]:
    """Verify a Stripe delivery and reconcile subscription events."""
    payload = await request.body()
    if not stripe_signature:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing Stripe-Signature header")

    try:
        event = stripe_service.construct_event(payload, stripe_signature)
    except stripe.SignatureVerificationError as exc:
        logger.warning("Rejected Stripe webhook with invalid signature")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid signature") from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    logger.info("Stripe webhook %s (%s)", event.get("type"), event.get("id"))
    try:
        billing_event = stripe_service.to_reconciler_event(event)
    except (KeyError, ValueError) as exc:
        logger.warning("Malformed Stripe %s payload: %s", event.get("type"), exc)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Malformed event payload") from exc

    if billing_event is None:
        return _IGNORED
    outcome = await _reconcile(reconciler, billing_event)
    return _outcome_body(outcome)


@router.post("/api/hotmart/webhook", include_in_schema=False)
async def hotmart_webhook(
    request: Request,
    hottok: Optional[str] = Header(default=None, alias="X-HOTMART-HOTTOK"),
    hotmart_service: HotmartService = Depends(get_hotmart_service),
    reconciler: Reconciler = Depends(get_reconciler),
) -> Dict[str, Any]:
    """Authenticate a Hotmart postback and reconcile the purchase."""
    if not hotmart_service.verify(hottok):
        logger.warning("Rejected Hotmart webhook with invalid hottok")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid hottok")

    body = await request.body()
    if not body.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Empty body")
    try:
        payload = HotmartPayload.model_validate(json.loads(body))
    except json.JSONDecodeError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON format") from exc
    except ValidationError as exc:
        logger.warning("Invalid Hotmart payload structure: %s", exc.error_count())
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid payload structure") from exc

    logger.info("Hotmart webhook %s (%s)", payload.event, payload.id)
    try:
        billing_event = await run_in_threadpool(hotmart_service.to_reconciler_event, payload)
    except ReconciliationFailed as exc:
        logger.error("Hotmart purchase %s could not be prepared: %s", payload.id, exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Reconciliation failed"
        ) from exc
    if billing_event is None:
        return _IGNORED
    outcome = await _reconcile(reconciler, billing_event)
    return _outcome_body(outcome)
