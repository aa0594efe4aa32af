"""Pydantic schemas for subscription provider webhooks"""
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _from_ms(value: Optional[int]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


class SubscriptionEvent(BaseModel):
    """The `event` object of a RevenueCat-style webhook envelope"""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    event_type: str = Field(alias="type")
    id: Optional[str] = None
    app_user_id: Optional[str] = None
    original_app_user_id: Optional[str] = None
    aliases: List[str] = []
    product_id: str = ""
    entitlement_ids: List[str] = []
    period_type: Optional[str] = None
    purchased_at_ms: Optional[int] = None
    expiration_at_ms: Optional[int] = None
    event_timestamp_ms: Optional[int] = None
    store: Optional[str] = None
    environment: Optional[str] = None
    price: Optional[float] = None
    currency: Optional[str] = None
    transaction_id: Optional[str] = None
    original_transaction_id: Optional[str] = None
    cancel_reason: Optional[str] = None

    @field_validator("aliases", "entitlement_ids", mode="before")
    @classmethod
    def none_as_empty(cls, v):
        return v if v is not None else []

    @field_validator("product_id", mode="before")
    @classmethod
    def none_as_blank(cls, v):
        return v if v is not None else ""

    @property
    def expires_at(self) -> Optional[datetime]:
        return _from_ms(self.expiration_at_ms)

    @property
    def purchased_at(self) -> Optional[datetime]:
        return _from_ms(self.purchased_at_ms)

    @property
    def lineage_id(self) -> Optional[str]:
        """Idempotency key for the subscription lineage"""
        return self.original_transaction_id or self.transaction_id

    def candidate_user_ids(self) -> List[str]:
        """Ids to try, in order, when resolving the internal user"""
        candidates = []
        for value in [self.app_user_id, self.original_app_user_id, *self.aliases]:
            if value and value not in candidates:
                candidates.append(value)
        return candidates

