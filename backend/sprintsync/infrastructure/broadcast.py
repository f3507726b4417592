"""
Room-scoped broadcast channel for real-time sprint updates.

Rooms are `user:<id>`, `project:<id>` and `sprint:<id>`. Delivery is
best-effort and at-most-once: a room without subscribers is not an error,
nothing is retried, and a subscriber whose send fails is dropped.
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, List, Protocol, Set

import structlog

logger = structlog.get_logger(__name__)


def user_room(user_id: str) -> str:
    return f"user:{user_id}"


def project_room(project_id: str) -> str:
    return f"project:{project_id}"


def sprint_room(sprint_id: str) -> str:
    return f"sprint:{sprint_id}"


class Subscriber(Protocol):
    """Anything that can receive a JSON message (a WebSocket, in practice)."""

    async def send_json(self, data: Any) -> None: ...


class BroadcastChannel:
    """Tracks room membership of live subscribers and fans events out to them."""

    def __init__(self):
        self._rooms: Dict[str, Set[Subscriber]] = {}
        self._lock = asyncio.Lock()
        self.published = 0
        self.dropped = 0

    async def join(self, subscriber: Subscriber, room: str) -> None:
        async with self._lock:
            self._rooms.setdefault(room, set()).add(subscriber)
        logger.debug("room_joined", room=room)

    async def leave(self, subscriber: Subscriber, room: str) -> None:
        async with self._lock:
            members = self._rooms.get(room)
            if members is not None:
                members.discard(subscriber)
                if not members:
                    del self._rooms[room]
        logger.debug("room_left", room=room)

    async def disconnect(self, subscriber: Subscriber) -> None:
        """Remove a subscriber from every room (called on disconnect)."""
        async with self._lock:
            for room in list(self._rooms):
                self._rooms[room].discard(subscriber)
                if not self._rooms[room]:
                    del self._rooms[room]

    async def subscribers(self, room: str) -> List[Subscriber]:
        async with self._lock:
            return list(self._rooms.get(room, ()))

    async def rooms_of(self, subscriber: Subscriber) -> Set[str]:
        async with self._lock:
            return {room for room, members in self._rooms.items() if subscriber in members}

    async def _send(self, subscriber: Subscriber, message: dict) -> bool:
        try:
            await subscriber.send_json(message)
            return True
        except Exception as e:
            logger.debug("broadcast_send_failed", room=message["room"], error=str(e))
            return False

    async def publish(self, room: str, event: str, payload: Dict[str, Any]) -> int:
        """
        Send an event to everyone currently in the room.

        Returns the number of subscribers that received it.
        """
        targets = await self.subscribers(room)
        self.published += 1
        if not targets:
            logger.debug("broadcast_no_subscribers", room=room, event_name=event)
            return 0

        message = {
            "event": event,
            "room": room,
            "data": payload,
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        }

        # No lock held during I/O
        results = await asyncio.gather(*(self._send(s, message) for s in targets))

        for subscriber, delivered in zip(targets, results):
            if not delivered:
                self.dropped += 1
                await self.disconnect(subscriber)

        delivered_count = sum(1 for ok in results if ok)
        logger.debug("broadcast_published", room=room, event_name=event, delivered=delivered_count)
        return delivered_count

    def stats(self) -> Dict[str, int]:
        return {
            "rooms": len(self._rooms),
            "published": self.published,
            "dropped": self.dropped,
        }
