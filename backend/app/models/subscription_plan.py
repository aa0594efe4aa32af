"""SubscriptionPlan model"""
import uuid
from sqlalchemy import Column, String, DateTime, Boolean, Numeric, JSON, Text
from datetime import datetime, timezone
from app.models.base import Base


class SubscriptionPlan(Base):
    """Plan catalog entry, one per tier"""
    __tablename__ = "subscription_plans"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    tier = Column(String(20), unique=True, nullable=False, index=True)
    price_monthly = Column(Numeric(10, 2), nullable=False, default=0)
    price_yearly = Column(Numeric(10, 2), nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="USD")
    features = Column(JSON, nullable=False, default=list)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
