"""
Shared Redis connection and the coordination primitives built on it.

Used by the job queue (storage) and by the worker (trigger locks and
once-per-period markers). The connection is opened on first use, so
importing this module never needs a running server.
"""

from typing import Optional
from redis import Redis
from redis.lock import Lock

from fleetcore.src import exceptions
from fleetcore.src.constants import (
    MUTEX_LOCK_MAX_WAIT_TIME,
    MUTEX_LOCK_TIMEOUT,
    REDIS_HOST,
    REDIS_PASSWORD,
    REDIS_PORT,
)

redisClient = Redis(
    host=REDIS_HOST,
    port=REDIS_PORT,
    password=REDIS_PASSWORD,
    decode_responses=True,
)


def lockName(name: str, pk: Optional[int] = None) -> str:
    return f"lock:{name}" if pk is None else f"lock:{name}:{pk}"


def acquireLock(
    name: str,
    pk: Optional[int] = None,
    timeOut: int = MUTEX_LOCK_TIMEOUT,
    blockingTimeOut: int = MUTEX_LOCK_MAX_WAIT_TIME,
    client: Optional[Redis] = None,
) -> Lock:
    """
    Take the mutex `lock:<name>` (or `lock:<name>:<pk>`), waiting up to
    `blockingTimeOut` seconds. The lock expires by itself after `timeOut`.

    Raises:
        exceptions.LockAcquireTimeout: If another holder kept it for the whole wait.
    """
    lock = (client or redisClient).lock(lockName(name, pk), timeout=timeOut)
    if not lock.acquire(blocking=True, blocking_timeout=blockingTimeOut):
        raise exceptions.LockAcquireTimeout()
    return lock


def releaseLock(lock: Optional[Lock]) -> None:
    # Expired or stolen locks are left alone
    if lock is not None and lock.owned():
        lock.release()


def claimOnce(key: str, ttl: int, client: Optional[Redis] = None) -> bool:
    """
    Set the marker `key` unless it exists. True for the first caller within
    `ttl` seconds, False for everyone after.
    """
    return bool((client or redisClient).set(key, 1, nx=True, ex=ttl))
