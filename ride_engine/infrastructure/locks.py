"""
Redis-based distributed lock.

Background loops (auto dispatch, config sync) run in every API replica;
the lock makes sure only one replica works a given cycle.  Acquire is
``SET NX EX``; release and extend are Lua scripts that only touch the key
while it still holds this holder's token, so a lock that expired and was
taken over is never released by its previous owner.
"""

from __future__ import annotations

import logging
import uuid

import redis.asyncio as aioredis

logger = logging.getLogger(__name__)

_RELEASE = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""

_EXTEND = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("expire", KEYS[1], ARGV[2])
else
    return 0
end
"""


class LockNotAcquired(RuntimeError):
    pass


class DistributedLock:
    def __init__(
        self, client: aioredis.Redis, name: str, ttl_seconds: int = 30
    ):
        self.redis = client
        self.key = f"ride-engine:lock:{name}"
        self.ttl = ttl_seconds
        self.token = uuid.uuid4().hex

    async def acquire(self) -> bool:
        """Try once; ``True`` when this holder now owns the key."""
        return bool(
            await self.redis.set(self.key, self.token, nx=True, ex=self.ttl)
        )

    async def extend(self) -> bool:
        """Reset the TTL if still owned; ``False`` means the lock was lost."""
        return bool(await self.redis.eval(_EXTEND, 1, self.key, self.token, self.ttl))

    async def release(self) -> bool:
        released = bool(await self.redis.eval(_RELEASE, 1, self.key, self.token))
        if not released:
            logger.warning("Lock %s expired before release", self.key)
        return released

    async def __aenter__(self):
        if not await self.acquire():
            raise LockNotAcquired(self.key)
        return self

    async def __aexit__(self, *args):
        await self.release()
