"""AuditLogEntry model"""
import uuid
from sqlalchemy import Column, String, DateTime, ForeignKey, JSON
from datetime import datetime, timezone
from app.models.base import Base


class AuditLogEntry(Base):
    """Append-only record of every processed webhook"""
    __tablename__ = "audit_logs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    action = Column(String(100), nullable=False, index=True)
    entity_type = Column(String(50), nullable=False)
    entity_id = Column(String(255), nullable=False)
    entry_metadata = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
