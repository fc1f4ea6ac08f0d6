from dataclasses import dataclass
from typing import List, Optional, Sequence, Set

from backend import StatsSink
from chat.registry import Connection, ConnectionRegistry
from logging_config import get_logger
from schemas.events import MatchedEvent
from transport import Transport

logger = get_logger(__name__)


@dataclass(frozen=True)
class Match:
    id_a: str
    id_b: str
    common_interests: List[str]


class WaitingPool:
    """Insertion-ordered set of connection ids waiting for a partner."""

    def __init__(self):
        self._ids: List[str] = []

    def add(self, connection_id: str) -> bool:
        if connection_id in self._ids:
            return False
        self._ids.append(connection_id)
        return True

    def discard(self, connection_id: str) -> bool:
        try:
            self._ids.remove(connection_id)
        except ValueError:
            return False
        return True

    def retain(self, keep: Set[str]) -> None:
        """Drop every id not in ``keep``, preserving the order of the rest."""
        self._ids = [connection_id for connection_id in self._ids if connection_id in keep]

    def snapshot(self) -> List[str]:
        return list(self._ids)

    def __contains__(self, connection_id: str) -> bool:
        return connection_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)


def common_interests(first: Sequence[str], second: Sequence[str]) -> Optional[List[str]]:
    """Return the shared tags if the two interest lists are compatible, else None.

    Tagged clients only match tagged clients with at least one tag in common,
    and untagged clients only match untagged clients (with no shared tags).
    """
    if first:
        if not second:
            return None
        other = set(second)
        shared = [tag for tag in first if tag in other]
        return shared or None
    if second:
        return None
    return []


def find_matches(pool: Sequence[str], registry: ConnectionRegistry) -> List[Match]:
    """Greedy single pass over the pool in order; each candidate takes the first compatible later entry."""
    matched: Set[str] = set()
    matches: List[Match] = []

    for i, id_a in enumerate(pool):
        if id_a in matched:
            continue
        connection_a = registry.get(id_a)
        if connection_a is None:
            continue

        for id_b in pool[i + 1:]:
            if id_b in matched or id_b == id_a:
                continue
            connection_b = registry.get(id_b)
            if connection_b is None:
                continue

            shared = common_interests(connection_a.interests, connection_b.interests)
            if shared is not None:
                matches.append(Match(id_a=id_a, id_b=id_b, common_interests=shared))
                matched.add(id_a)
                matched.add(id_b)
                break

    return matches


class MatchingEngine:
    def __init__(self, registry: ConnectionRegistry, pool: WaitingPool, transport: Transport,
                 stats: Optional[StatsSink] = None):
        self.registry = registry
        self.pool = pool
        self.transport = transport
        self.stats = stats
        self.matches_total = 0

    def run(self) -> List[Match]:
        """Pair up whoever can be paired right now and notify both sides of each pair."""
        if len(self.pool) < 2:
            return []

        waiting = self.pool.snapshot()
        matches = find_matches(waiting, self.registry)

        matched_ids = {m.id_a for m in matches} | {m.id_b for m in matches}
        # Stale ids (disconnected mid-flight) leave the pool along with matched ones
        self.pool.retain({
            connection_id for connection_id in waiting
            if connection_id not in matched_ids and connection_id in self.registry
        })

        applied = []
        for match in matches:
            if self._apply(match):
                applied.append(match)
        return applied

    def _apply(self, match: Match) -> bool:
        connection_a = self.registry.get(match.id_a)
        connection_b = self.registry.get(match.id_b)
        if connection_a is None or connection_b is None:
            return False
        if not self._can_pair(connection_a, connection_b):
            return False

        connection_a.partner_id = connection_b.id
        connection_b.partner_id = connection_a.id
        connection_a.is_typing = False
        connection_b.is_typing = False

        self.transport.send(connection_a.id, "matched", MatchedEvent(
            partnerId=connection_b.id, commonInterests=match.common_interests).model_dump())
        self.transport.send(connection_b.id, "matched", MatchedEvent(
            partnerId=connection_a.id, commonInterests=match.common_interests).model_dump())

        self.matches_total += 1
        logger.info(f"Matched {connection_a.id} with {connection_b.id} [Tags: {', '.join(match.common_interests)}]")

        if self.stats is not None:
            self.stats.record_match(match)
        return True

    @staticmethod
    def _can_pair(connection_a: Connection, connection_b: Connection) -> bool:
        if connection_a.id == connection_b.id:
            logger.critical(f"Invariant violation: refusing to pair {connection_a.id} with itself")
            return False
        if connection_a.is_paired or connection_b.is_paired:
            logger.critical(
                f"Invariant violation: refusing to pair {connection_a.id} (partner {connection_a.partner_id}) "
                f"with {connection_b.id} (partner {connection_b.partner_id})"
            )
            return False
        return True
