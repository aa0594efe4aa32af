"""WebhookEvent model"""
from sqlalchemy import Column, Integer, String, Boolean, Text, JSON, DateTime
from datetime import datetime, timezone
from app.models.base import Base


class WebhookEvent(Base):
    """Every structurally valid webhook delivery, kept for replay"""
    __tablename__ = "webhook_events"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(String(255), unique=True, nullable=False, index=True)
    event_type = Column(String(100), nullable=False, index=True)
    app_user_id = Column(String(255), nullable=True, index=True)
    payload = Column(JSON, nullable=False)
    processed = Column(Boolean, default=False, nullable=False)
    outcome = Column(String(50), nullable=True, index=True)  # 'processed', 'user_not_found', 'ignored', 'error'
    error_message = Column(Text, nullable=True)
    delivery_count = Column(Integer, default=1, nullable=False)
    received_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    processed_at = Column(DateTime(timezone=True), nullable=True)
