from concurrent.futures import Future, ThreadPoolExecutor
from typing import TYPE_CHECKING, Any, Callable, Optional, Protocol

import redis

from constants import (
    INSTANCE_ID,
    PRESENCE_TTL_SECONDS,
    REDIS_HOST,
    REDIS_PASSWORD,
    REDIS_PORT,
    REDIS_SOCKET_TIMEOUT,
)
from logging_config import get_logger
from redis_keys import REDIS_INSTANCE_ONLINE_KEY, REDIS_INSTANCE_PATTERN, REDIS_MATCHES_TOTAL_KEY, REDIS_TAG_MATCHES_KEY

if TYPE_CHECKING:
    from chat.matching import Match

logger = get_logger(__name__)


class StatsSink(Protocol):
    def record_match(self, match: "Match") -> None:
        ...

    def record_online_count(self, count: int) -> None:
        ...


class RedisStatsBackend:
    """Cluster-wide counters kept in Redis.

    Chat state never lives here: every instance pairs only its own
    connections. Redis just aggregates online counts and match totals so
    ``/stats`` can report numbers for the whole deployment.

    ``record_*`` are called from the chat core on the event loop, so they
    only queue the write on a single worker thread and return. Writes run in
    submission order there; Redis errors are logged and dropped, stats must
    never break chat.
    """

    def __init__(self, redis_client: Optional[redis.Redis] = None, instance_id: str = INSTANCE_ID,
                 ttl: int = PRESENCE_TTL_SECONDS):
        self.instance_id = instance_id
        self.ttl = ttl
        if redis_client is None:
            logger.info(f"Initializing RedisStatsBackend with connection to {REDIS_HOST}:{REDIS_PORT}")
            try:
                redis_client = redis.Redis(host=REDIS_HOST, port=REDIS_PORT, password=REDIS_PASSWORD,
                                           decode_responses=True, socket_timeout=REDIS_SOCKET_TIMEOUT,
                                           socket_connect_timeout=REDIS_SOCKET_TIMEOUT)
                redis_client.ping()
                logger.info(f"Redis client connected successfully to {REDIS_HOST}:{REDIS_PORT}")
            except Exception as e:
                logger.error(f"Failed to connect to Redis at {REDIS_HOST}:{REDIS_PORT}: {e}", exc_info=True)
                raise
        self.redis_client = redis_client
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="redis-stats")

    def record_online_count(self, count: int) -> None:
        self._submit(self._write_online_count, count)

    def record_match(self, match: "Match") -> None:
        self._submit(self._write_match, match)

    def flush(self, timeout: Optional[float] = None) -> None:
        """Block until every write queued so far has run."""
        self._executor.submit(lambda: None).result(timeout=timeout)

    def _submit(self, write: Callable[..., None], *args: Any) -> Optional[Future]:
        try:
            return self._executor.submit(write, *args)
        except RuntimeError:
            logger.debug(f"Stats backend closed, dropping {write.__name__}")
            return None

    def _write_online_count(self, count: int) -> None:
        key = REDIS_INSTANCE_ONLINE_KEY.format(instance_id=self.instance_id)
        try:
            self.redis_client.set(key, count, ex=self.ttl)
            logger.debug(f"Stored online count {count} for instance {self.instance_id}")
        except redis.RedisError as e:
            logger.error(f"Failed to store online count for instance {self.instance_id}: {e}", exc_info=True)

    def _write_match(self, match: "Match") -> None:
        try:
            pipe = self.redis_client.pipeline()
            pipe.incr(REDIS_MATCHES_TOTAL_KEY)
            for tag in match.common_interests:
                pipe.zincrby(REDIS_TAG_MATCHES_KEY, 1, tag)
            pipe.execute()
        except redis.RedisError as e:
            logger.error(f"Failed to record match {match.id_a}/{match.id_b}: {e}", exc_info=True)

    def cluster_online_count(self) -> int:
        total = 0
        for key in self.redis_client.scan_iter(match=REDIS_INSTANCE_PATTERN):
            value = self.redis_client.get(key)
            if value is not None:
                total += int(value)
        return total

    def matches_total(self) -> int:
        value = self.redis_client.get(REDIS_MATCHES_TOTAL_KEY)
        return int(value) if value is not None else 0

    def top_interests(self, limit: int = 10):
        return [
            {"tag": tag, "matches": int(score)}
            for tag, score in self.redis_client.zrevrange(REDIS_TAG_MATCHES_KEY, 0, limit - 1, withscores=True)
        ]

    def clear_instance(self) -> None:
        """Remove this instance's online count, e.g. on shutdown."""
        try:
            self.redis_client.delete(REDIS_INSTANCE_ONLINE_KEY.format(instance_id=self.instance_id))
        except redis.RedisError as e:
            logger.error(f"Failed to clear online count for instance {self.instance_id}: {e}", exc_info=True)

    def close(self) -> None:
        """Run the queued writes, remove this instance's online count and release the client. Blocking."""
        self._submit(self.clear_instance)
        self._executor.shutdown(wait=True)
        self.redis_client.close()
