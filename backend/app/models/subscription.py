"""Subscription model"""
import uuid
from sqlalchemy import Column, String, DateTime, Boolean, ForeignKey, JSON, UniqueConstraint
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from app.models.base import Base


class Subscription(Base):
    """One provider-side subscription lineage, keyed by original transaction id"""
    __tablename__ = "subscriptions"
    __table_args__ = (
        UniqueConstraint("user_id", "original_transaction_id", name="uq_subscriptions_user_original_txn"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    plan_id = Column(String(36), ForeignKey("subscription_plans.id"), nullable=False)
    original_transaction_id = Column(String(255), nullable=False, index=True)
    provider = Column(String(20), nullable=False)  # 'APPLE', 'GOOGLE', 'STRIPE', 'PROMOTIONAL'
    status = Column(String(20), nullable=False, index=True)  # 'ACTIVE', 'CANCELLED', 'EXPIRED', 'PAST_DUE'
    interval = Column(String(10), nullable=False)  # 'MONTHLY', 'YEARLY'
    current_period_start = Column(DateTime(timezone=True), nullable=False)
    current_period_end = Column(DateTime(timezone=True), nullable=True)  # None for lifetime purchases
    auto_renew = Column(Boolean, default=True, nullable=False)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancel_reason = Column(String(255), nullable=True)
    provider_data = Column(JSON, nullable=True)  # Last raw event snapshot
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc), nullable=False)

    # Relationships
    user = relationship("User", back_populates="subscriptions")
    plan = relationship("SubscriptionPlan")
