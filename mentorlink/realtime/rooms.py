"""
Room Broadcast Router

A room is the set of live connections whose active session slot holds
a given session id. Broadcast only enqueues onto each member's outbound
queue, so it never waits on a slow member.
"""
import logging
from typing import Any, Dict, List, Optional, Set, Tuple

from mentorlink.errors import BadRequestError, ErrorCode, ForbiddenError
from mentorlink.realtime.connection import Connection
from mentorlink.realtime.protocol import SESSION_KICKED

logger = logging.getLogger(__name__)


class RoomRouter:

    def __init__(self):
        # {session_id: {connection_id: Connection}}
        self.rooms: Dict[str, Dict[str, Connection]] = {}
        # (session_id, user_id) pairs evicted by a kick; a kick is never undone
        self.removed: Set[Tuple[str, str]] = set()

    def check_can_join(self, connection: Connection, session_id: str) -> None:
        """
        Raises:
            ForbiddenError: The user was evicted from this room
            BadRequestError: The connection already sits in a different room
        """
        if (session_id, connection.user_id) in self.removed:
            raise ForbiddenError("You have been removed from this session", code=ErrorCode.PARTICIPANT_REMOVED)
        if connection.session_id is not None and connection.session_id != session_id:
            raise BadRequestError(
                f"Leave session {connection.session_id} before joining another",
                code=ErrorCode.ROOM_CONFLICT,
            )

    def join(self, connection: Connection, session_id: str) -> bool:
        """
        Admit a connection whose membership was already verified.

        Returns:
            True if newly admitted, False if it was already in this room
        """
        self.check_can_join(connection, session_id)
        if connection.session_id == session_id:
            return False
        self.rooms.setdefault(session_id, {})[connection.id] = connection
        connection.session_id = session_id
        logger.info(f"Connection {connection.id} (user {connection.user_id}) joined room {session_id}")
        return True

    def leave(self, connection: Connection) -> Optional[str]:
        """Drop the connection from its room. Returns the session id it left."""
        session_id = connection.session_id
        if session_id is None:
            return None
        members = self.rooms.get(session_id)
        if members is not None:
            members.pop(connection.id, None)
            if not members:
                del self.rooms[session_id]
        connection.session_id = None
        return session_id

    def members(self, session_id: str) -> List[Connection]:
        return list(self.rooms.get(session_id, {}).values())

    def broadcast(
        self,
        session_id: str,
        event: str,
        payload: Optional[Dict[str, Any]],
        exclude: Optional[Connection] = None,
    ) -> int:
        """
        Fan an event out to the room.

        Args:
            exclude: Connection to skip (the sender, for relays)
        Returns:
            Number of members the event was queued for
        """
        delivered = 0
        for connection in self.members(session_id):
            if exclude is not None and connection.id == exclude.id:
                continue
            connection.send(event, payload)
            delivered += 1
        return delivered

    def evict_user(self, session_id: str, user_id: str) -> List[Connection]:
        """Remove every live connection of user_id from the room and tell them why."""
        self.removed.add((session_id, user_id))
        evicted = [c for c in self.members(session_id) if c.user_id == user_id]
        for connection in evicted:
            self.leave(connection)
            connection.send(SESSION_KICKED, {"sessionId": session_id})
        if evicted:
            logger.info(f"Evicted {len(evicted)} connection(s) of user {user_id} from room {session_id}")
        return evicted

    def connection_count(self, session_id: Optional[str] = None) -> int:
        if session_id is not None:
            return len(self.rooms.get(session_id, {}))
        return sum(len(members) for members in self.rooms.values())
