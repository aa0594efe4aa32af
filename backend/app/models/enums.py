"""String enums stored in the subscription tables"""
from enum import Enum


class SubscriptionTier(str, Enum):
    FREE = "FREE"
    BASIC = "BASIC"
    PREMIUM = "PREMIUM"
    FAMILY = "FAMILY"


class SubscriptionStatus(str, Enum):
    ACTIVE = "ACTIVE"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"
    PAST_DUE = "PAST_DUE"


class BillingInterval(str, Enum):
    MONTHLY = "MONTHLY"
    YEARLY = "YEARLY"


class PaymentProvider(str, Enum):
    APPLE = "APPLE"
    GOOGLE = "GOOGLE"
    STRIPE = "STRIPE"
    PROMOTIONAL = "PROMOTIONAL"


# Statuses that still hold a live lineage (expiration applies to both)
LIVE_STATUSES = (SubscriptionStatus.ACTIVE.value, SubscriptionStatus.PAST_DUE.value)
