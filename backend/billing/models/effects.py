"""Effect payloads queued by business logic during a transaction."""

import uuid
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field, model_validator

# Structured cache dependency identifier, e.g. "customer:cus_123"
CacheDependencyKey = str


class CacheDependency:
    """Builders for cache dependency keys."""

    @staticmethod
    def customer(customer_id: str) -> CacheDependencyKey:
        return f"customer:{customer_id}"

    @staticmethod
    def customer_subscriptions(customer_id: str) -> CacheDependencyKey:
        return f"customer_subscriptions:{customer_id}"

    @staticmethod
    def subscription(subscription_id: str) -> CacheDependencyKey:
        return f"subscription:{subscription_id}"

    @staticmethod
    def price(price_id: str) -> CacheDependencyKey:
        return f"price:{price_id}"

    @staticmethod
    def prices_by_pricing_model(pricing_model_id: str) -> CacheDependencyKey:
        return f"prices_by_pricing_model:{pricing_model_id}"

    @staticmethod
    def organization(organization_id: str) -> CacheDependencyKey:
        return f"organization:{organization_id}"


class EventInsert(BaseModel):
    """Domain event to be persisted with the transaction.

    Events are deduplicated by ``hash``; one is generated when the caller
    does not supply it, so unhashed events are never skipped.
    """

    type: str = Field(..., min_length=1)
    organization_id: str
    livemode: bool
    payload: dict[str, Any] = Field(default_factory=dict)
    hash: str = ""

    @model_validator(mode="after")
    def _ensure_hash(self) -> "EventInsert":
        if not self.hash:
            self.hash = f"evt_hash_{uuid.uuid4().hex}"
        return self


class LedgerTransactionType(str, Enum):
    """Kinds of ledger commands."""

    usage_event_processed = "usage_event_processed"
    credit_grant_recognized = "credit_grant_recognized"
    billing_period_transition = "billing_period_transition"
    billing_run_usage_processed = "billing_run_usage_processed"
    billing_run_credit_applied = "billing_run_credit_applied"
    settle_invoice_usage_costs = "settle_invoice_usage_costs"
    admin_credit_adjusted = "admin_credit_adjusted"
    credit_grant_expired = "credit_grant_expired"
    payment_refunded = "payment_refunded"
    billing_recalculated = "billing_recalculated"


class LedgerEntryInsert(BaseModel):
    """Single entry within a ledger command."""

    ledger_account_id: str
    direction: Literal["debit", "credit"]
    amount: int = Field(..., ge=0)
    entry_type: str
    source_id: str | None = None


class LedgerCommand(BaseModel):
    """Instruction to append to the ledger inside the current transaction."""

    type: LedgerTransactionType
    organization_id: str
    livemode: bool
    subscription_id: str | None = None
    description: str | None = None
    initiating_source_id: str | None = None
    entries: list[LedgerEntryInsert] = Field(default_factory=list)


class TaskTrigger(BaseModel):
    """Background task to start once the transaction has committed."""

    task: str = Field(..., min_length=1)
    payload: dict[str, Any] = Field(default_factory=dict)
    idempotency_key: str | None = None
