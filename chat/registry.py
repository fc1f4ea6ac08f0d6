from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional

from logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class Connection:
    """One live client. ``id`` is the transport's handle for the socket."""

    id: str
    partner_id: Optional[str] = None
    interests: List[str] = field(default_factory=list)
    is_typing: bool = False

    @property
    def is_paired(self) -> bool:
        return self.partner_id is not None


class ConnectionRegistry:
    """In-memory table of every connected client, keyed by connection id."""

    def __init__(self):
        self._connections: Dict[str, Connection] = {}

    def add(self, connection_id: str) -> Connection:
        existing = self._connections.get(connection_id)
        if existing is not None:
            logger.warning(f"Connection {connection_id} is already registered")
            return existing
        connection = Connection(id=connection_id)
        self._connections[connection_id] = connection
        logger.debug(f"Registered connection {connection_id} (online: {len(self._connections)})")
        return connection

    def remove(self, connection_id: str) -> Optional[Connection]:
        """Drop a connection. Unknown ids are ignored, duplicate disconnects are expected."""
        connection = self._connections.pop(connection_id, None)
        if connection is None:
            logger.debug(f"Connection {connection_id} already removed from registry")
        else:
            logger.debug(f"Removed connection {connection_id} (online: {len(self._connections)})")
        return connection

    def get(self, connection_id: str) -> Optional[Connection]:
        return self._connections.get(connection_id)

    def size(self) -> int:
        return len(self._connections)

    def ids(self) -> List[str]:
        return list(self._connections)

    def paired_count(self) -> int:
        return sum(1 for connection in self._connections.values() if connection.is_paired)

    def __contains__(self, connection_id: str) -> bool:
        return connection_id in self._connections

    def __len__(self) -> int:
        return len(self._connections)

    def __iter__(self) -> Iterator[Connection]:
        return iter(list(self._connections.values()))
