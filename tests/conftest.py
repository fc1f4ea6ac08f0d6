"""Shared fixtures: a ChatServer wired to an in-memory recording transport."""

from typing import Any, List, Set, Tuple

import pytest

from chat.lifecycle import ChatServer


class RecordingTransport:
    """Transport double that remembers every frame instead of writing it."""

    def __init__(self) -> None:
        self.attached: Set[str] = set()
        self.sent: List[Tuple[str, str, Any]] = []

    def send(self, connection_id: str, event: str, payload: Any = None) -> bool:
        if connection_id not in self.attached:
            return False
        self.sent.append((connection_id, event, payload))
        return True

    def broadcast(self, event: str, payload: Any = None) -> int:
        for connection_id in sorted(self.attached):
            self.sent.append((connection_id, event, payload))
        return len(self.attached)

    def events_for(self, connection_id: str, event: str = None) -> List[Any]:
        return [
            payload for target, name, payload in self.sent
            if target == connection_id and (event is None or name == event)
        ]

    def names_for(self, connection_id: str) -> List[str]:
        return [name for target, name, _ in self.sent if target == connection_id]

    def clear(self) -> None:
        self.sent.clear()


class RecordingStats:
    def __init__(self) -> None:
        self.matches = []
        self.online_counts = []

    def record_match(self, match) -> None:
        self.matches.append(match)

    def record_online_count(self, count: int) -> None:
        self.online_counts.append(count)


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def stats() -> RecordingStats:
    return RecordingStats()


@pytest.fixture
def server(transport: RecordingTransport, stats: RecordingStats) -> ChatServer:
    return ChatServer(transport, stats=stats)


@pytest.fixture
def connect(server: ChatServer, transport: RecordingTransport):
    """Attach and register connections the way the websocket endpoint does."""

    def _connect(*connection_ids: str) -> None:
        for connection_id in connection_ids:
            transport.attached.add(connection_id)
            server.connect(connection_id)

    return _connect


@pytest.fixture
def disconnect(server: ChatServer, transport: RecordingTransport):
    def _disconnect(connection_id: str) -> None:
        transport.attached.discard(connection_id)
        server.disconnect(connection_id)

    return _disconnect
