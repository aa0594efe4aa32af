"""Exceptions raised by the webhook pipeline"""


class WebhookError(Exception):
    """Base class for webhook processing errors"""


class InvalidWebhookPayload(WebhookError):
    """The envelope is missing its event object (answered with 400)"""


class UserLockTimeout(WebhookError):
    """Another delivery for the same user held the lock for too long"""

    def __init__(self, user_id: str, waited: float):
        super().__init__(f"Could not lock user {user_id} within {waited:.1f}s")
        self.user_id = user_id
        self.waited = waited
