from typing import Optional

from backend import StatsSink
from chat.registry import ConnectionRegistry
from logging_config import get_logger
from transport import Transport

logger = get_logger(__name__)


class PresenceBroadcaster:
    def __init__(self, registry: ConnectionRegistry, transport: Transport, stats: Optional[StatsSink] = None):
        self.registry = registry
        self.transport = transport
        self.stats = stats

    def broadcast_count(self) -> int:
        """Send the current online count to every registered connection."""
        count = self.registry.size()
        self.transport.broadcast("online_count", count)
        logger.debug(f"Broadcasted online count {count}")
        if self.stats is not None:
            self.stats.record_online_count(count)
        return count
