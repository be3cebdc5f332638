"""Pydantic models for the subset of the Hotmart webhook payload billing reads."""

from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class _HotmartModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


class HotmartProduct(_HotmartModel):
    id: Union[int, str]
    name: Optional[str] = None


class HotmartBuyer(_HotmartModel):
    email: str
    name: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None

    @property
    def display_name(self) -> Optional[str]:
        if self.name:
            return self.name
        joined = " ".join(part for part in (self.first_name, self.last_name) if part)
        return joined or None


class HotmartPrice(_HotmartModel):
    value: float
    currency_value: Optional[str] = None


class HotmartOffer(_HotmartModel):
    code: Optional[str] = None


class HotmartPurchase(_HotmartModel):
    transaction: Optional[str] = None
    status: Optional[str] = None
    order_date: Optional[int] = Field(None, description="Epoch milliseconds")
    approved_date: Optional[int] = Field(None, description="Epoch milliseconds")
    price: Optional[HotmartPrice] = None
    offer: Optional[HotmartOffer] = None


class HotmartPlanRef(_HotmartModel):
    id: Optional[Union[int, str]] = None
    name: Optional[str] = None


class HotmartSubscription(_HotmartModel):
    status: Optional[str] = None
    plan: Optional[HotmartPlanRef] = None


class HotmartData(_HotmartModel):
    product: HotmartProduct
    buyer: HotmartBuyer
    purchase: HotmartPurchase
    subscription: Optional[HotmartSubscription] = None


class HotmartPayload(_HotmartModel):
    id: str
    event: str
    creation_date: Optional[int] = Field(None, description="Epoch milliseconds")
    version: Optional[str] = None
    data: HotmartData
