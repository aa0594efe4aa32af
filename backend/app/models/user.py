"""User model"""
import uuid
from sqlalchemy import Column, String, DateTime
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from app.models.base import Base
from app.models.enums import SubscriptionTier


class User(Base):
    """User accounts with a cached projection of the active subscription"""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String(255), unique=True, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    # Entitlement cache - only written by the webhook transition handlers
    subscription_tier = Column(String(20), default=SubscriptionTier.FREE.value, nullable=False)
    subscription_expires_at = Column(DateTime(timezone=True), nullable=True)
    revenuecat_user_id = Column(String(255), nullable=True, index=True)  # Provider correlation id

    # Relationships
    subscriptions = relationship("Subscription", back_populates="user", order_by="Subscription.created_at")
