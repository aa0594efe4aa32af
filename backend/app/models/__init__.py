"""SQLAlchemy models package - imports all models so they register with Base.metadata"""
from app.models.base import Base
from app.models.user import User
from app.models.subscription_plan import SubscriptionPlan
from app.models.subscription import Subscription
from app.models.audit_log import AuditLogEntry
from app.models.webhook_event import WebhookEvent

# Export all for convenience
__all__ = [
    "Base", "User", "SubscriptionPlan", "Subscription", "AuditLogEntry", "WebhookEvent"
]
