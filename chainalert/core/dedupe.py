import time
from typing import Any, Callable, Dict, Optional, Set

from redis.asyncio import Redis

from ..errors import SharedStoreError
from ..logger import logger

DEFAULT_DEDUPE_TTL = 7 * 24 * 3600


def dedupe_key(chain: str, tx_hash: str, log_index: int, token_address: str, recipient: str) -> str:
    """Build the lowercase ``{chain}:{txHash}:{logIndex}:{token}:{recipient}`` key"""
    return f"{chain}:{tx_hash}:{log_index}:{token_address}:{recipient}".lower()


class DedupeStore:
    """
    Records which alert keys have already been claimed

    Uses Redis ``SET NX EX`` as the shared backing when available, with an
    in-process ``key -> expiry`` map that mirrors every claim and serves as
    fallback. Any Redis error flips the store to the fallback; a PING every
    ``reconnect_interval`` seconds flips it back once Redis answers again, and
    claims taken during the outage are then written to Redis. Redis failures
    never propagate.
    """

    def __init__(
        self,
        redis: Optional[Redis] = None,
        max_entries: int = 10_000,
        reconnect_interval: float = 30.0,
        sweep_interval: float = 60.0,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize dedupe store

        Args:
            redis: Async Redis client, None for memory-only operation
            max_entries: Upper bound on the local map; the oldest claims are evicted beyond it
            reconnect_interval: Minimum seconds between reconnection probes
            sweep_interval: Minimum seconds between sweeps of expired local entries
            clock: Time source in seconds, replaceable in tests
        """
        self.redis = redis
        self.max_entries = max_entries
        self.reconnect_interval = reconnect_interval
        self.sweep_interval = sweep_interval
        self._clock = clock
        self._local: Dict[str, float] = {}
        # Claims taken while Redis was unreachable
        self._unsynced: Set[str] = set()
        self._healthy = redis is not None
        self._last_probe = 0.0
        self._last_sweep: Optional[float] = None

    @classmethod
    def from_url(cls, url: Optional[str], **kwargs) -> "DedupeStore":
        """Create a store backed by the Redis at ``url``, or memory-only if empty"""
        if not url:
            logger.info("No Redis URL configured, dedupe uses in-process memory only")
            return cls(**kwargs)
        return cls(redis=Redis.from_url(url, socket_timeout=5, socket_connect_timeout=5), **kwargs)

    @property
    def healthy(self) -> bool:
        """Whether the shared store is currently in use"""
        return self.redis is not None and self._healthy

    async def _call(self, command: str, *args: Any, **kwargs: Any) -> Any:
        try:
            return await getattr(self.redis, command)(*args, **kwargs)
        except Exception as e:
            raise SharedStoreError(f"Redis {command.upper()} failed: {e}") from e

    def _mark_unhealthy(self, error: SharedStoreError) -> None:
        if self._healthy:
            logger.warning(f"Redis unavailable, falling back to in-process dedupe: {error}")
        self._healthy = False
        self._last_probe = self._clock()

    async def _ensure_connection(self) -> bool:
        """Probe Redis at most once per reconnect interval while unhealthy"""
        if self.redis is None:
            return False
        if self._healthy:
            return True
        now = self._clock()
        if now - self._last_probe < self.reconnect_interval:
            return False
        self._last_probe = now
        try:
            await self._call("ping")
            await self._sync_unsynced()
        except SharedStoreError as e:
            logger.debug(f"Redis still unavailable: {e}")
            return False
        logger.info("Redis connection restored, resuming shared dedupe")
        self._healthy = True
        return True

    async def _sync_unsynced(self) -> None:
        """Write claims taken during an outage to Redis with their remaining TTL"""
        now = self._clock()
        for key in list(self._unsynced):
            expiry = self._local.get(key)
            if expiry is not None and expiry > now:
                await self._call("set", key, "1", nx=True, ex=max(1, int(expiry - now)))
            self._unsynced.discard(key)

    # Local fallback

    def _local_seen(self, key: str) -> bool:
        expiry = self._local.get(key)
        if expiry is None:
            return False
        if self._clock() >= expiry:
            del self._local[key]
            self._unsynced.discard(key)
            return False
        return True

    def _local_set(self, key: str, ttl: int) -> None:
        now = self._clock()
        self._local.pop(key, None)
        self._local[key] = now + ttl
        if len(self._local) <= self.max_entries:
            return
        if self._last_sweep is None or now - self._last_sweep >= self.sweep_interval:
            self._sweep(now)
        # Insertion order is claim order
        while len(self._local) > self.max_entries:
            oldest = next(iter(self._local))
            del self._local[oldest]
            self._unsynced.discard(oldest)

    def _sweep(self, now: float) -> None:
        self._last_sweep = now
        expired = [k for k, expiry in self._local.items() if now >= expiry]
        for k in expired:
            del self._local[k]
            self._unsynced.discard(k)
        if expired:
            logger.debug(f"Swept {len(expired)} expired dedupe entries")

    # Public API

    async def try_claim(self, key: str, ttl: int = DEFAULT_DEDUPE_TTL) -> bool:
        """
        Atomically mark a key as seen if it is not already

        Args:
            key: Dedupe key
            ttl: Seconds until the claim expires

        Returns:
            bool: True if the key was new and is now claimed, False for a duplicate
        """
        if self._local_seen(key):
            return False

        if await self._ensure_connection():
            try:
                claimed = await self._call("set", key, "1", nx=True, ex=ttl)
            except SharedStoreError as e:
                self._mark_unhealthy(e)
            else:
                if claimed:
                    self._local_set(key, ttl)
                return bool(claimed)

        self._local_set(key, ttl)
        if self.redis is not None:
            self._unsynced.add(key)
        return True

    async def release(self, key: str) -> None:
        """Drop a claim, e.g. after a failed delivery, so the event can be retried"""
        self._local.pop(key, None)
        self._unsynced.discard(key)
        if await self._ensure_connection():
            try:
                await self._call("delete", key)
            except SharedStoreError as e:
                self._mark_unhealthy(e)

    async def is_seen(self, key: str) -> bool:
        """Check a key without claiming it"""
        if self._local_seen(key):
            return True
        if await self._ensure_connection():
            try:
                return bool(await self._call("exists", key))
            except SharedStoreError as e:
                self._mark_unhealthy(e)
        return False

    def __len__(self) -> int:
        return len(self._local)

    async def close(self) -> None:
        if self.redis is not None:
            try:
                await self.redis.aclose()
            except Exception as e:
                logger.error(f"Error closing Redis connection: {e}")
