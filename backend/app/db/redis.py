"""Redis client and per-user webhook locks"""
import logging
from contextlib import contextmanager

import redis
from redis.exceptions import LockError

from app.core.config import settings
from app.core.exceptions import UserLockTimeout

logger = logging.getLogger(__name__)

# Lazy initialization - no connection at import time
_client = None


def get_redis_client():
    """Get or create Redis client (lazy initialization)

    This prevents connection attempts during import, allowing mocks to be applied first.
    """
    global _client
    if _client is None:
        _client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    return _client


def user_lock_key(user_id: str) -> str:
    return f"lock:entitlements:user:{user_id}"


@contextmanager
def user_lock(user_id: str, timeout: int = None, wait: float = None, poll_interval: float = 0.05):
    """Serialize entitlement mutations for one user across workers.

    Uses a redis-py Lock: acquisition is SET NX PX with a random token and
    release is a server-side compare-and-delete, so a holder whose lock
    expired never deletes the lock another worker acquired since.

    Raises:
        UserLockTimeout: If the lock could not be acquired within `wait` seconds
    """
    timeout = timeout if timeout is not None else settings.WEBHOOK_LOCK_TIMEOUT
    wait = wait if wait is not None else settings.WEBHOOK_LOCK_WAIT
    lock = get_redis_client().lock(
        user_lock_key(user_id),
        timeout=timeout,
        sleep=poll_interval,
        blocking_timeout=wait,
    )
    if not lock.acquire():
        raise UserLockTimeout(user_id, wait)

    try:
        yield
    finally:
        try:
            lock.release()
        except LockError:
            logger.warning(f"Lock {user_lock_key(user_id)} expired before release")
