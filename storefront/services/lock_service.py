import redis

from storefront.utils.retry import redis_retry
from storefront.utils.settings import REDIS_URL
from storefront.utils.logging import get_logger

logger = get_logger(__name__)

# compare-and-delete in one script: only the owner can release its lock
_RELEASE_LUA = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('DEL', KEYS[1])
else
    return 0
end
"""


class LockService:
    """
    Short-lived Redis locks around multi-document cart operations.
    SET NX EX to acquire, Lua compare-and-delete to release.
    """

    def __init__(self, url: str | None = None):
        self.redis = redis.Redis.from_url(
            url or REDIS_URL,
            decode_responses=True,
        )

    @staticmethod
    def _merge_key(guest_id: str) -> str:
        return f"cart:guest:{guest_id}:merge"

    @redis_retry()
    def acquire_merge_lock(self, guest_id: str, owner: str, ttl: int) -> bool:
        key = self._merge_key(guest_id)
        logger.info(f"Acquire lock {key} for {owner}")
        # expires on its own if the holder dies mid-merge
        return bool(self.redis.set(name=key, value=owner, nx=True, ex=ttl))

    @redis_retry()
    def release_merge_lock(self, guest_id: str, owner: str) -> bool:
        key = self._merge_key(guest_id)
        logger.info(f"Release lock {key} for {owner}")
        res = self.redis.eval(_RELEASE_LUA, 1, key, owner)
        return bool(res)
