from core.locks.local_provider import LocalOrderLockProvider
from core.locks.provider import OrderLockProvider
from core.locks.redis_provider import RedisOrderLockProvider

__all__ = [
    "LocalOrderLockProvider",
    "OrderLockProvider",
    "RedisOrderLockProvider",
]
