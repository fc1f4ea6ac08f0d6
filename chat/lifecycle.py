"""Connection lifecycle: the single entry point for everything a client does.

Per connection the states are ``idle -> waiting -> paired -> (waiting | idle)``
and finally ``gone`` on disconnect. Every method here is synchronous and
runs to completion on the event loop, so no two events ever interleave their
mutations of the registry, the waiting pool or a connection's partner.
"""

from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError

from backend import StatsSink
from chat.matching import Match, MatchingEngine, WaitingPool
from chat.presence import PresenceBroadcaster
from chat.registry import Connection, ConnectionRegistry
from chat.relay import SessionRelay
from logging_config import get_logger
from schemas.events import (
    ErrorEvent,
    JoinQueueRequest,
    NextPartnerRequest,
    SendMessageRequest,
    SignalRequest,
    TypingFlag,
)
from transport import Transport

logger = get_logger(__name__)


class InvalidEventError(Exception):
    """Raised for inbound events that cannot be applied as sent."""

    def __init__(self, event: str, detail: str):
        super().__init__(f"{event}: {detail}")
        self.event = event
        self.detail = detail


class ChatServer:
    def __init__(self, transport: Transport, stats: Optional[StatsSink] = None,
                 require_partner_for_signals: bool = False):
        self.transport = transport
        self.registry = ConnectionRegistry()
        self.pool = WaitingPool()
        self.matcher = MatchingEngine(self.registry, self.pool, transport, stats=stats)
        self.relay = SessionRelay(self.registry, transport, require_partner=require_partner_for_signals)
        self.presence = PresenceBroadcaster(self.registry, transport, stats=stats)

        self._handlers: Dict[str, Callable[[str, Any], Any]] = {
            "join_queue": self._on_join_queue,
            "leave_queue": self._on_leave_queue,
            "disconnect_chat": self._on_leave_queue,
            "send_message": self._on_send_message,
            "typing": self._on_typing,
            "next_partner": self._on_next_partner,
            "signal": self._on_signal,
        }

    # -- transport-level lifecycle ------------------------------------------

    def connect(self, connection_id: str) -> Connection:
        connection = self.registry.add(connection_id)
        logger.info(f"Connection {connection_id} online ({self.registry.size()} online)")
        self.presence.broadcast_count()
        return connection

    def disconnect(self, connection_id: str) -> None:
        connection = self.registry.get(connection_id)
        if connection is None:
            logger.debug(f"Ignoring duplicate disconnect for {connection_id}")
            return
        self.pool.discard(connection_id)
        self._unpair(connection)
        self.registry.remove(connection_id)
        logger.info(f"Connection {connection_id} gone ({self.registry.size()} online)")
        self.presence.broadcast_count()

    # -- inbound events -----------------------------------------------------

    def handle(self, connection_id: str, event: str, payload: Any = None) -> None:
        """Dispatch one inbound event; malformed input is reported to the sender and changes nothing."""
        handler = self._handlers.get(event)
        try:
            if handler is None:
                raise InvalidEventError(event, "unknown event")
            if connection_id not in self.registry:
                logger.debug(f"Ignoring '{event}' from unregistered connection {connection_id}")
                return
            handler(connection_id, payload)
        except InvalidEventError as e:
            logger.warning(f"Rejected '{e.event}' from {connection_id}: {e.detail}")
            self.transport.send(connection_id, "error", ErrorEvent(event=e.event, detail=e.detail).model_dump())

    def join_queue(self, connection_id: str, interests: List[str]) -> List[Match]:
        connection = self.registry.get(connection_id)
        if connection is None:
            return []
        connection.interests = list(interests)
        if connection.is_paired:
            logger.debug(f"Connection {connection_id} is paired, not queueing")
            return []
        if self.pool.add(connection_id):
            logger.info(f"Connection {connection_id} waiting [Tags: {', '.join(connection.interests)}]")
        return self.matcher.run()

    def next_partner(self, connection_id: str, interests: List[str]) -> List[Match]:
        connection = self.registry.get(connection_id)
        if connection is None:
            return []
        self._unpair(connection)
        self.pool.discard(connection_id)
        return self.join_queue(connection_id, interests)

    def leave_queue(self, connection_id: str) -> None:
        connection = self.registry.get(connection_id)
        if connection is None:
            return
        self._unpair(connection)
        if self.pool.discard(connection_id):
            logger.info(f"Connection {connection_id} left the queue")

    def state_of(self, connection_id: str) -> str:
        connection = self.registry.get(connection_id)
        if connection is None:
            return "gone"
        if connection.is_paired:
            return "paired"
        if connection_id in self.pool:
            return "waiting"
        return "idle"

    def stats(self) -> Dict[str, int]:
        return {
            "online_count": self.registry.size(),
            "waiting_count": len(self.pool),
            "paired_count": self.registry.paired_count(),
            "matches_total": self.matcher.matches_total,
        }

    # -- helpers ------------------------------------------------------------

    def _unpair(self, connection: Connection) -> None:
        """Break the pair from ``connection``'s side; only the other side is notified."""
        partner_id = connection.partner_id
        if partner_id is None:
            return
        connection.partner_id = None
        connection.is_typing = False

        partner = self.registry.get(partner_id)
        if partner is not None and partner.partner_id == connection.id:
            partner.partner_id = None
            partner.is_typing = False
        self.transport.send(partner_id, "partner_disconnected", {})
        logger.info(f"Unpaired {connection.id} from {partner_id}")

    def _on_join_queue(self, connection_id: str, payload: Any) -> None:
        request = _validate(JoinQueueRequest, "join_queue", payload)
        self.join_queue(connection_id, request.interests)

    def _on_next_partner(self, connection_id: str, payload: Any) -> None:
        request = _validate(NextPartnerRequest, "next_partner", payload)
        self.next_partner(connection_id, request.interests)

    def _on_leave_queue(self, connection_id: str, payload: Any) -> None:
        self.leave_queue(connection_id)

    def _on_send_message(self, connection_id: str, payload: Any) -> None:
        request = _validate(SendMessageRequest, "send_message", payload)
        self.relay.message(connection_id, request.text)

    def _on_typing(self, connection_id: str, payload: Any) -> None:
        try:
            is_typing = TypingFlag.validate_python(payload)
        except ValidationError as e:
            raise InvalidEventError("typing", _describe(e)) from e
        self.relay.typing(connection_id, is_typing)

    def _on_signal(self, connection_id: str, payload: Any) -> None:
        request = _validate(SignalRequest, "signal", payload)
        self.relay.signal(connection_id, request.target, request.signal)


def _validate(model, event: str, payload: Any):
    if payload is None:
        payload = {}
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        raise InvalidEventError(event, _describe(e)) from e


def _describe(error: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(part) for part in item['loc']) or 'data'}: {item['msg']}" for item in error.errors()
    )
