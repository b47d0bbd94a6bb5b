"""
Canonical payment records - the single format every provider adapter emits and
every webhook handler feeds into the persistence routine.

All monetary fields are integers in minor units (cents). StrictInt rejects
floats so a forgotten major-unit conversion fails loudly at the adapter edge.
"""
from datetime import datetime
from typing import Literal, Optional
from pydantic import BaseModel, Field, StrictInt

SubscriptionStatus = Literal["trial_active", "active", "past_due", "canceled", "expired", "paused"]
TransactionStatus = Literal["pending", "succeeded", "failed", "refunded"]
TransactionType = Literal["subscription_payment", "one_time_payment", "refund"]
BillingPeriod = Literal["day", "week", "month", "year"]


class FetchParams(BaseModel):
    """Window and paging hints for provider fetches."""
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    limit: Optional[int] = Field(default=None, ge=1)
    cursor: Optional[str] = None


class NormalizedSubscription(BaseModel):
    external_subscription_id: str
    external_customer_id: str
    external_product_id: str
    external_price_id: Optional[str] = None
    status: SubscriptionStatus
    is_trial: bool = False
    trial_amount: Optional[StrictInt] = None
    trial_currency: Optional[str] = None
    trial_start: Optional[datetime] = None
    trial_end: Optional[datetime] = None
    recurring_amount: StrictInt
    recurring_currency: str
    billing_period: BillingPeriod = "month"
    billing_interval: int = 1
    started_at: Optional[datetime] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    next_billing_date: Optional[datetime] = None
    canceled_at: Optional[datetime] = None
    cancel_at_period_end: bool = False
    metadata: dict = Field(default_factory=dict)


class NormalizedTransaction(BaseModel):
    external_transaction_id: str
    external_customer_id: str
    external_subscription_id: Optional[str] = None
    external_invoice_id: Optional[str] = None
    type: TransactionType
    status: TransactionStatus
    amount: StrictInt
    currency: str
    payment_method: Optional[str] = None
    created_at: datetime
    paid_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None
    metadata: dict = Field(default_factory=dict)


class NormalizedCustomer(BaseModel):
    external_customer_id: str
    email: Optional[str] = None
    name: Optional[str] = None
    phone: Optional[str] = None
    document: Optional[str] = None
    document_type: Optional[str] = None
    country: Optional[str] = None
    state: Optional[str] = None
    city: Optional[str] = None
    zip_code: Optional[str] = None
    address_line1: Optional[str] = None
    address_line2: Optional[str] = None
    created_at: Optional[datetime] = None
    metadata: dict = Field(default_factory=dict)


class AffiliateFragment(BaseModel):
    external_affiliate_id: str
    name: Optional[str] = None
    email: Optional[str] = None


class OrderFragment(BaseModel):
    external_order_id: str
    total_amount: StrictInt = 0
    currency: str = "USD"
    status: str = "paid"
    ordered_at: Optional[datetime] = None


class PersistenceFragment(BaseModel):
    """Everything one event contributes; any section may be absent."""
    customer: Optional[NormalizedCustomer] = None
    affiliate: Optional[AffiliateFragment] = None
    subscription: Optional[NormalizedSubscription] = None
    transaction: Optional[NormalizedTransaction] = None
    order: Optional[OrderFragment] = None
