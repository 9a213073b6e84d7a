# app/core/pubsub.py
"""
In-memory realtime state for chat: who is connected and who listens to which
room.

- ConnectionRegistry: identity -> live connection record (one per identity)
- RoomChannel: room id -> set of identities, plus broadcast over the registry

Identities are (user_id, role) pairs because students, faculty and admins have
independent id sequences. Both structures are owned by the ChatCoordinator;
nothing else mutates them. Mutations never await, so handlers running on the
event loop always observe complete updates.
"""
import datetime as dt
import json
import logging
from dataclasses import dataclass, field
from typing import Dict, List, NamedTuple, Optional, Set

from starlette.websockets import WebSocket

logger = logging.getLogger(__name__)


class Identity(NamedTuple):
    user_id: int
    role: str


class ChatConnection:
    """
    One realtime connection. ``identity`` is bound once the handshake succeeds
    and is the only identity trusted for later events on this connection.
    """

    def __init__(self, ws: WebSocket):
        self.ws = ws
        self.identity: Optional[Identity] = None

    async def send(self, payload: dict):
        await self.ws.send_text(json.dumps(payload, default=str))


@dataclass
class ConnectionRecord:
    identity: Identity
    connection: ChatConnection
    online: bool = True
    last_seen: dt.datetime = field(default_factory=lambda: dt.datetime.now(dt.timezone.utc))


class ConnectionRegistry:
    def __init__(self):
        self._records: Dict[Identity, ConnectionRecord] = {}

    def register(self, record: ConnectionRecord) -> Optional[ConnectionRecord]:
        """Insert or replace the record for its identity; returns the replaced one."""
        previous = self._records.get(record.identity)
        self._records[record.identity] = record
        if previous is not None and previous is not record:
            previous.online = False
        return previous

    def unregister(self, identity: Identity, connection: ChatConnection) -> bool:
        """
        Remove the record for ``identity`` if it still belongs to ``connection``.
        A reconnect replaces the record, and the stale connection closing later
        must not evict the newer one.
        """
        record = self._records.get(identity)
        if record is None or record.connection is not connection:
            return False
        del self._records[identity]
        record.online = False
        return True

    def get(self, identity: Identity) -> Optional[ConnectionRecord]:
        return self._records.get(identity)

    def is_current(self, identity: Identity, connection: ChatConnection) -> bool:
        record = self._records.get(identity)
        return record is not None and record.connection is connection

    def touch(self, identity: Identity, now: dt.datetime) -> None:
        record = self._records.get(identity)
        if record is not None:
            record.last_seen = now

    def __contains__(self, identity: Identity) -> bool:
        return identity in self._records

    def __len__(self) -> int:
        return len(self._records)


class RoomChannel:
    """
    Room membership index with broadcast.

    Data structure:
    - _rooms: Dict[room_id, Set[Identity]]
    """

    def __init__(self):
        self._rooms: Dict[int, Set[Identity]] = {}

    def join(self, room_id: int, identity: Identity) -> None:
        self._rooms.setdefault(room_id, set()).add(identity)

    def leave(self, room_id: int, identity: Identity) -> None:
        members = self._rooms.get(room_id)
        if members is None:
            return
        members.discard(identity)
        if not members:
            del self._rooms[room_id]

    def drop_member(self, identity: Identity) -> List[int]:
        """Remove ``identity`` from every room; returns the rooms it left."""
        left = [room_id for room_id, members in self._rooms.items() if identity in members]
        for room_id in left:
            self.leave(room_id, identity)
        return left

    def members(self, room_id: int) -> Set[Identity]:
        return set(self._rooms.get(room_id, ()))

    async def publish(self, room_id: int, payload: dict, registry: ConnectionRegistry) -> int:
        """
        Send ``payload`` to every member of ``room_id`` that is connected right
        now. Offline members are skipped (no queueing), including members whose
        connection is unregistered while the broadcast is in progress. Returns
        the number of connections the payload was written to.
        """
        targets = [registry.get(identity) for identity in self.members(room_id)]
        delivered = 0
        for record in targets:
            if record is None or not record.online:
                continue
            try:
                await record.connection.send(payload)
                delivered += 1
            except Exception as e:  # connection may be closing
                logger.debug("[chat] broadcast to %s failed: %r", record.identity, e)
        return delivered
