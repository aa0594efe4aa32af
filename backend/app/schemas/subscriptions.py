"""Pydantic schemas for entitlement summaries"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict


class ActiveSubscriptionInfo(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    original_transaction_id: str
    status: str
    interval: str
    provider: str
    current_period_end: Optional[datetime] = None
    auto_renew: bool


class EntitlementSummary(BaseModel):
    user_id: str
    subscription_tier: str
    subscription_expires_at: Optional[datetime] = None
    active_subscription: Optional[ActiveSubscriptionInfo] = None
