import secrets
from abc import ABC, abstractmethod
from typing import Optional

import structlog
from redis.asyncio import Redis as AsyncRedis
from redis.exceptions import RedisError

from utils.exceptions import StorageError

logger = structlog.get_logger(__name__)

# delete only if we still own the lock
_RELEASE_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('del', KEYS[1])
end
return 0
"""


class ScanLock(ABC):
    """Best-effort advisory lock around one scan run."""

    @abstractmethod
    async def acquire(self) -> bool:
        pass

    @abstractmethod
    async def release(self) -> None:
        pass


class NullScanLock(ScanLock):
    """Used when Redis is not configured; never blocks."""

    async def acquire(self) -> bool:
        return True

    async def release(self) -> None:
        return None


class RedisScanLock(ScanLock):
    """SET NX EX lock; the TTL frees it if a worker dies mid-scan."""

    def __init__(self, redis: AsyncRedis, key: str = "locks:payment_due_scan", ttl: int = 3600):
        self.redis = redis
        self.key = key
        self.ttl = ttl
        self._token: Optional[str] = None

    async def acquire(self) -> bool:
        token = secrets.token_hex(16)
        try:
            acquired = await self.redis.set(self.key, token, nx=True, ex=self.ttl)
        except RedisError as e:
            raise StorageError(f"Could not acquire scan lock: {e}") from e
        if acquired:
            self._token = token
        return bool(acquired)

    async def release(self) -> None:
        if self._token is None:
            return
        try:
            await self.redis.eval(_RELEASE_SCRIPT, 1, self.key, self._token)
        except RedisError as e:
            logger.warning("scan_lock_release_failed", key=self.key, error=str(e))
        finally:
            self._token = None


def create_redis_client(redis_url: Optional[str]) -> Optional[AsyncRedis]:
    """One client per process or job run; the owner closes it with `aclose()`."""
    if not redis_url:
        return None
    return AsyncRedis.from_url(redis_url, decode_responses=True)


def build_scan_lock(redis: Optional[AsyncRedis], ttl: int = 3600) -> ScanLock:
    """Lock over a shared client; NullScanLock when Redis is not configured."""
    if redis is None:
        return NullScanLock()
    return RedisScanLock(redis, ttl=ttl)
