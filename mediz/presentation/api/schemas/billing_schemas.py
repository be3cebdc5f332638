"""Pydantic schemas for the billing back-office endpoints."""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field


class AdminLoginRequest(BaseModel):
    email: EmailStr
    password: str


class PlanUpsertRequest(BaseModel):
    """Create a plan or overwrite the one registered under ``external_id``."""

    external_id: str = Field(..., min_length=1, description="Stripe price id or Hotmart offer key")
    id_kind: Literal["stripe_price_id", "hotmart_offer_key", "hotmart_id"] = "stripe_price_id"
    name: str = Field(..., min_length=1)
    currency: str = Field(..., min_length=3, max_length=3, description="ISO 4217 code")
    interval: str = Field(..., description="DAY, WEEK, MONTH or YEAR")
    interval_count: int = Field(1, ge=1)
    amount: int = Field(..., ge=0, description="Minor currency units")
    active: bool = True
    trial_period_days: Optional[int] = Field(None, ge=0)


class PlanResponse(BaseModel):
    id: int
    name: str
    provider: str
    currency: str
    interval: str
    interval_count: int
    amount: int
    active: bool
    stripe_price_id: Optional[str] = None
    hotmart_offer_key: Optional[str] = None
    hotmart_id: Optional[str] = None
    trial_period_days: Optional[int] = None


class SubscriptionCreateRequest(BaseModel):
    """Manual grant. The period end defaults to one plan interval after the start."""

    user_id: int
    plan_id: int
    status: str = Field("active", min_length=1)
    current_period_start: Optional[datetime] = Field(None, description="Defaults to now")
    current_period_end: Optional[datetime] = None


class SubscriptionUpdateRequest(BaseModel):
    plan_id: Optional[int] = None
    status: Optional[str] = Field(None, min_length=1)
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None


class SubscriptionResponse(BaseModel):
    id: int
    user_id: int
    plan_id: int
    external_subscription_id: str
    provider: str
    status: str
    current_period_start: datetime
    current_period_end: datetime
    is_entitled: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class RecalculateRequest(BaseModel):
    user_id: Optional[int] = Field(None, description="Only this user's subscriptions; all when omitted")


class RecalculateResponse(BaseModel):
    total: int
    updated_count: int
    updated_ids: List[int]


class EntitlementResponse(BaseModel):
    user_id: int
    is_premium: bool
    as_of: datetime
    subscriptions: List[SubscriptionResponse]


class PremiumStatsResponse(BaseModel):
    as_of: datetime
    premium_users: int
    entitled_subscriptions: int
    users_with_multiple: int
    consistent: bool
