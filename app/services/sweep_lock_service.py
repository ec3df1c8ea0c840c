"""
Redis-backed sweep lease for multi-replica deployments.
Implements SweepLock interface using Redis.

Circuit Breaker Pattern:
  On Redis failure, the lease "fails open" (this replica sweeps anyway).
  Sweeper transitions are idempotent compare-and-set updates, so two
  replicas sweeping the same tick only duplicates work, never state.
"""

import uuid

from app.services.interfaces.sweep_lock import SweepLock
from app.infrastructure.redis_client import get_redis
from app.core.metrics import redis_connection_errors
from app.core.logging import get_logger

logger = get_logger(__name__)

# Delete the key only if this process still owns it
RELEASE_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('del', KEYS[1])
end
return 0
"""


class RedisSweepLock(SweepLock):
    """
    Redis lease: SET key token NX EX ttl.

    Use when:
    - Several API replicas each run the scheduler
    - Sweeps are large enough that duplicate passes are wasteful
    """

    def __init__(self, prefix: str = "sweeper:lease"):
        self.prefix = prefix
        self.token = uuid.uuid4().hex
        self._held: set[str] = set()

    def _key(self, name: str) -> str:
        return f"{self.prefix}:{name}"

    async def _client(self):
        return await get_redis()

    async def acquire(self, name: str, ttl_seconds: int) -> bool:
        client = await self._client()
        if client is None:
            return True

        try:
            acquired = await client.set(self._key(name), self.token, nx=True, ex=ttl_seconds)
        except Exception as e:
            # Circuit breaker: On Redis failure, fail open
            redis_connection_errors.inc()
            logger.warning("sweep_lease_unavailable", lease=name, error=str(e))
            return True

        if acquired:
            self._held.add(name)
        return bool(acquired)

    async def release(self, name: str):
        if name not in self._held:
            return
        self._held.discard(name)

        client = await self._client()
        if client is None:
            return
        try:
            await client.eval(RELEASE_SCRIPT, 1, self._key(name), self.token)
        except Exception as e:
            # Lease lapses on its own through the TTL
            redis_connection_errors.inc()
            logger.warning("sweep_lease_release_failed", lease=name, error=str(e))
