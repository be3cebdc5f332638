"""Plan domain model: one purchasable billing offering."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class PlanInterval(str, Enum):
    DAY = "DAY"
    WEEK = "WEEK"
    MONTH = "MONTH"
    YEAR = "YEAR"

    @classmethod
    def parse(cls, value: Any) -> "PlanInterval":
        """Accept provider spellings such as ``month`` or ``Month``."""
        if isinstance(value, cls):
            return value
        if not value:
            raise ValueError("Plan interval is required")
        try:
            return cls(str(value).strip().upper())
        except ValueError as exc:
            raise ValueError(f"Unsupported plan interval: {value!r}") from exc


# Columns that may carry a provider identifier for a plan, in lookup order.
EXTERNAL_ID_KINDS = ("stripe_price_id", "hotmart_offer_key", "hotmart_id")


@dataclass(slots=True)
class Plan:
    id: int
    name: str
    currency: str
    interval: PlanInterval
    interval_count: int
    amount: int
    active: bool
    stripe_price_id: Optional[str] = None
    hotmart_offer_key: Optional[str] = None
    hotmart_id: Optional[str] = None
    trial_period_days: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def provider(self) -> str:
        if self.hotmart_offer_key or self.hotmart_id:
            return "hotmart"
        return "stripe"

    @property
    def external_id(self) -> Optional[str]:
        return self.stripe_price_id or self.hotmart_offer_key or self.hotmart_id


@dataclass(slots=True)
class PlanAttributes:
    """Provider-authoritative attributes used to create or correct a plan."""

    name: str
    currency: str
    interval: PlanInterval
    amount: int
    interval_count: int = 1
    active: bool = True
    trial_period_days: Optional[int] = None
    extra_ids: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.currency = (self.currency or "").strip().upper()
        if len(self.currency) != 3:
            raise ValueError(f"Currency must be an ISO 4217 code, got {self.currency!r}")
        self.interval = PlanInterval.parse(self.interval)
        if self.interval_count < 1:
            raise ValueError("interval_count must be a positive integer")
        if self.amount < 0:
            raise ValueError("amount must not be negative")
        unknown = set(self.extra_ids) - set(EXTERNAL_ID_KINDS)
        if unknown:
            raise ValueError(f"Unknown external id kinds: {sorted(unknown)}")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PlanAttributes":
        extra_ids = {
            kind: str(data[kind]) for kind in EXTERNAL_ID_KINDS if data.get(kind) not in (None, "")
        }
        return cls(
            name=data["name"],
            currency=data["currency"],
            interval=data["interval"],
            amount=int(data["amount"]),
            interval_count=int(data.get("interval_count") or 1),
            active=bool(data.get("active", True)),
            trial_period_days=data.get("trial_period_days"),
            extra_ids=extra_ids,
        )
