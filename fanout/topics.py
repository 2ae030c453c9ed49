"""
SUBSCRIPTION TOPICS

Topic names a connection may join:
- newPools                      every discovery
- newPools:<chain>              discoveries on one chain
- price:<pairAddress>           price ticks for one pool
- trades:<chain>:<pairAddress>  joinable, no producer yet
- trending                      trending snapshots
- chain:<chain>                 per-chain top pools

Membership lives only as long as the connection.
"""

import threading
from typing import Dict, Iterable, Optional, Set

NEW_POOLS = 'newPools'
TRENDING = 'trending'


def new_pools_topic(chain: Optional[str] = None) -> str:
    return f"{NEW_POOLS}:{chain}" if chain else NEW_POOLS


def price_topic(pair_id: str) -> str:
    return f"price:{pair_id}"


def trades_topic(chain: str, pair_address: str) -> str:
    return f"trades:{chain}:{pair_address}"


def chain_topic(chain: str) -> str:
    return f"chain:{chain}"


class TopicRegistry:
    """topic -> set of connection ids, plus the reverse index for disconnects."""

    def __init__(self):
        self._members: Dict[str, Set[str]] = {}
        self._topics: Dict[str, Set[str]] = {}
        self._lock = threading.Lock()

    def join(self, sid: str, topic: str):
        with self._lock:
            self._members.setdefault(topic, set()).add(sid)
            self._topics.setdefault(sid, set()).add(topic)

    def leave(self, sid: str, topic: str):
        with self._lock:
            self._discard(sid, topic)

    def leave_all(self, sid: str) -> int:
        """Drop every membership of a connection. Returns how many were removed."""
        with self._lock:
            topics = self._topics.pop(sid, set())
            for topic in topics:
                members = self._members.get(topic)
                if members is not None:
                    members.discard(sid)
                    if not members:
                        del self._members[topic]
            return len(topics)

    def _discard(self, sid: str, topic: str):
        members = self._members.get(topic)
        if members is not None:
            members.discard(sid)
            if not members:
                del self._members[topic]
        topics = self._topics.get(sid)
        if topics is not None:
            topics.discard(topic)
            if not topics:
                del self._topics[sid]

    def members(self, *topics: str) -> Set[str]:
        """Union of the members of all given topics (each connection once)."""
        with self._lock:
            result: Set[str] = set()
            for topic in topics:
                result.update(self._members.get(topic, ()))
            return result

    def topics_for(self, sid: str) -> Set[str]:
        with self._lock:
            return set(self._topics.get(sid, ()))

    def topic_counts(self) -> Dict[str, int]:
        with self._lock:
            return {topic: len(members) for topic, members in self._members.items()}

    def join_many(self, sid: str, topics: Iterable[str]):
        for topic in topics:
            self.join(sid, topic)

    def leave_many(self, sid: str, topics: Iterable[str]):
        for topic in topics:
            self.leave(sid, topic)
