from typing import Optional

from chat.registry import ConnectionRegistry
from logging_config import get_logger
from schemas.events import SignalPayload
from transport import Transport

logger = get_logger(__name__)


class SessionRelay:
    """Forwards chat traffic between the two sides of a pair.

    Chat messages and typing flags always go to the sender's current
    partner and are dropped when there is none. WebRTC signals go to the
    target named by the sender; with ``require_partner`` set, only a target
    equal to the sender's partner is accepted.
    """

    def __init__(self, registry: ConnectionRegistry, transport: Transport, require_partner: bool = False):
        self.registry = registry
        self.transport = transport
        self.require_partner = require_partner

    def message(self, sender_id: str, text: str) -> bool:
        partner_id = self._partner_of(sender_id)
        if partner_id is None:
            logger.debug(f"Dropping message from unpaired connection {sender_id}")
            return False
        self.transport.send(partner_id, "message", {"text": text})
        return True

    def typing(self, sender_id: str, is_typing: bool) -> bool:
        sender = self.registry.get(sender_id)
        if sender is None:
            return False
        sender.is_typing = is_typing
        partner_id = self._partner_of(sender_id)
        if partner_id is None:
            return False
        self.transport.send(partner_id, "partner_typing", is_typing)
        return True

    def signal(self, sender_id: str, target_id: str, signal: SignalPayload) -> bool:
        if target_id not in self.registry:
            logger.debug(f"Dropping {signal.type} from {sender_id}: target {target_id} is not connected")
            return False

        if self.require_partner:
            sender = self.registry.get(sender_id)
            if sender is None or sender.partner_id != target_id:
                logger.warning(f"Rejected {signal.type} from {sender_id} to non-partner {target_id}")
                return False

        self.transport.send(target_id, "signal", {"type": signal.type, "payload": signal.payload})
        logger.debug(f"Relayed {signal.type} from {sender_id} to {target_id}")
        return True

    def _partner_of(self, connection_id: str) -> Optional[str]:
        connection = self.registry.get(connection_id)
        if connection is None or connection.partner_id is None:
            return None
        if connection.partner_id not in self.registry:
            logger.debug(f"Partner {connection.partner_id} of {connection_id} is gone")
            return None
        return connection.partner_id
