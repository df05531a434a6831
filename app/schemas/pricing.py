from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


MAX_PLAN_DAYS = 365


class PaymentMethod(StrEnum):
    ISRAELI_CARD = "ISRAELI_CARD"
    FOREIGN_CARD = "FOREIGN_CARD"
    BIT = "BIT"
    AMEX = "AMEX"
    DINERS = "DINERS"


class SelectionParams(BaseModel):
    model_config = ConfigDict(frozen=True)

    destination_id: str | None = None
    region_id: str | None = None
    payment_method: PaymentMethod | None = None
    max_days: int | None = Field(default=None, ge=1, le=MAX_PLAN_DAYS)
    priority_duration: int | None = Field(default=None, ge=1, le=MAX_PLAN_DAYS)


# --- Wire format (camelCase, as the pricing GraphQL API speaks it) ---


class PricingRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    numOfDays: int
    countryId: str
    paymentMethod: PaymentMethod | None = None
    groups: tuple[str, ...] = ()


class BatchPricingRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    inputs: tuple[PricingRequest, ...]
    requestedDays: int | None = None

    def variables(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class BundleCountry(BaseModel):
    iso: str | None = None
    name: str | None = None


class BundlePayload(BaseModel):
    id: str | None = None
    name: str | None = None
    duration: int | None = None
    isUnlimited: bool = False
    data: float | None = None
    group: str | None = None
    country: BundleCountry | None = None


class CountryPayload(BaseModel):
    iso: str | None = None
    name: str | None = None
    nameHebrew: str | None = None
    region: str | None = None
    flag: str | None = None


class PricingStep(BaseModel):
    order: int
    name: str
    priceBefore: float
    priceAfter: float
    impact: float
    ruleId: str | None = None
    metadata: dict[str, Any] | None = None
    timestamp: float | None = None


class CustomerDiscount(BaseModel):
    name: str
    amount: float
    percentage: float | None = None
    reason: str | None = None


class PricingResultPayload(BaseModel):
    duration: int = Field(gt=0)
    finalPrice: float
    totalCost: float
    discountValue: float
    currency: str | None = None
    bundle: BundlePayload | None = None
    country: CountryPayload | None = None
    pricingSteps: list[PricingStep] | None = None
    savingsAmount: float | None = None
    savingsPercentage: float | None = None
    customerDiscounts: list[CustomerDiscount] | None = None


# --- Cached entries and snapshots exposed to readers ---


class PriceEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    days: int
    total_price: float  # final price after discount
    original_price: float  # totalCost before discount
    discount_amount: float
    has_discount: bool
    daily_price: float
    currency: str | None = None
    bundle: BundlePayload | None = None
    country: CountryPayload | None = None
    pricing_steps: list[PricingStep] | None = None
    savings_amount: float | None = None
    savings_percentage: float | None = None
    customer_discounts: list[CustomerDiscount] = []


class PricingSnapshot(BaseModel):
    state: str
    destination: str | None = None
    priority_duration: int | None = None
    generation: int
    loading: bool
    is_priority_loading: bool
    is_ready: bool
    is_background_streaming: bool
    loading_progress: float
    loaded_count: int
    total_count: int
    loaded_days: list[int] = []
    stalled_days: list[int] = []
    prices: dict[int, PriceEntry] = {}
    error: str | None = None
