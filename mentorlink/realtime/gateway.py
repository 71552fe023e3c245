"""
Connection Gateway

Authenticates live connections and dispatches their inbound events to
the participant service, the execution pool and the room router.

Rules every handler follows:
- Room membership and permissions are re-checked at the point of use;
  nothing is trusted from an earlier event on the same connection
- Durable writes complete before the matching broadcast
- A failed handler answers with a failed ack plus session:error, and
  never closes the connection
"""
import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional

from mentorlink.config.settings import Settings, get_settings
from mentorlink.errors import APIError, BadRequestError, ErrorCode, UnauthorizedError, error_message
from mentorlink.orm.base import isoformat, utcnow
from mentorlink.realtime import protocol
from mentorlink.realtime.connection import Connection
from mentorlink.realtime.protocol import ProtocolError, parse_frame
from mentorlink.realtime.rooms import RoomRouter
from mentorlink.repositories.base import SessionRepository
from mentorlink.sandbox.pool import ExecutionPool
from mentorlink.security.identity import AuthenticatedUser
from mentorlink.security.roles import resolve_role
from mentorlink.services.identity_client import IdentityClient, IdentityError
from mentorlink.services.participant_service import ParticipantService

logger = logging.getLogger(__name__)

DEFAULT_LANGUAGE = "javascript"
TIMEOUT_MESSAGE = "Request timed out"

Handler = Callable[[Connection, Dict[str, Any]], Awaitable[None]]

# Shown when a handler fails with something other than a classified error
FALLBACK_MESSAGES = {
    protocol.SESSION_JOIN: "Unable to join session",
    protocol.SESSION_LEAVE: "Unable to leave session",
    protocol.CHAT_MESSAGE: "Unable to send message",
    protocol.CODE_UPDATE: "Unable to update code",
    protocol.CODE_RUN: "Unable to run code",
    protocol.PERMISSIONS_UPDATE: "Unable to update permissions",
}


def _now_ms() -> int:
    return int(time.time() * 1000)


def extract_token(auth_token: Optional[str], authorization: Optional[str]) -> Optional[str]:
    """
    Pick the bearer credential. The explicit auth field wins over the header;
    the header has its literal "Bearer" prefix stripped.
    """
    if auth_token is not None:
        return auth_token.strip()
    if authorization:
        return authorization.replace("Bearer", "", 1).strip()
    return None


class ConnectionGateway:
    """Owns every live connection for this worker."""

    def __init__(
        self,
        service: ParticipantService,
        identity_client: IdentityClient,
        pool: ExecutionPool,
        router: Optional[RoomRouter] = None,
        repository: Optional[SessionRepository] = None,
        settings: Optional[Settings] = None,
    ):
        settings = settings or get_settings()
        self.service = service
        self.identity_client = identity_client
        self.pool = pool
        self.router = router or RoomRouter()
        self.repository = repository if repository is not None else service.repository
        self.handler_timeout = settings.handler_timeout_seconds
        self.max_queue_size = settings.outbound_queue_size
        self.connections: Dict[str, Connection] = {}

        self._handlers: Dict[str, Handler] = {
            protocol.SESSION_JOIN: self._on_join,
            protocol.SESSION_LEAVE: self._on_leave,
            protocol.CHAT_MESSAGE: self._on_chat_message,
            protocol.CODE_UPDATE: self._on_code_update,
            protocol.CODE_RUN: self._on_code_run,
            protocol.PERMISSIONS_UPDATE: self._on_permissions_update,
        }

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    async def authenticate(
        self,
        auth_token: Optional[str] = None,
        authorization: Optional[str] = None,
    ) -> AuthenticatedUser:
        """
        Verify the handshake credential with the identity provider.

        Raises:
            UnauthorizedError: Credential missing, rejected or unknown
            ServiceError: Role lookup in the store failed
        """
        token = extract_token(auth_token, authorization)
        if not token:
            raise UnauthorizedError("Missing authentication token", code=ErrorCode.AUTH_REQUIRED)

        try:
            user = await self.identity_client.get_user(token)
        except IdentityError:
            raise UnauthorizedError("Invalid or expired authentication token", code=ErrorCode.AUTH_INVALID)

        role = await resolve_role(user, self.repository)
        return AuthenticatedUser(id=user.id, email=user.email, name=user.display_name, role=role)

    def open_connection(self, transport, identity: Optional[AuthenticatedUser]) -> Optional[Connection]:
        """Register an authenticated transport. Returns None when there is no identity."""
        if identity is None or not identity.id:
            return None
        connection = Connection(transport, identity, max_queue_size=self.max_queue_size)
        connection.start()
        self.connections[connection.id] = connection
        logger.info(f"Connection {connection.id} opened for user {identity.id}")
        return connection

    async def close_connection(self, connection: Connection, reason: str = "disconnect") -> None:
        self.router.leave(connection)
        self.connections.pop(connection.id, None)
        await connection.close()
        logger.info(f"Connection {connection.id} closed for user {connection.user_id} ({reason})")

    async def shutdown(self) -> None:
        for connection in list(self.connections.values()):
            await self.close_connection(connection, reason="shutdown")

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def submit(self, connection: Connection, raw: str) -> asyncio.Task:
        """Run one inbound frame as its own task; several may be in flight per connection."""
        task = asyncio.create_task(self.handle_frame(connection, raw))
        connection.track(task)
        return task

    async def handle_frame(self, connection: Connection, raw: str) -> None:
        try:
            frame = parse_frame(raw)
        except ProtocolError as e:
            self._fail(connection, e.ack, e.message)
            return

        if frame.event in protocol.RELAY_EVENTS:
            self._relay(connection, frame.event, frame.data)
            if frame.ack is not None:
                connection.send_ack(frame.ack, True)
            return

        handler = self._handlers.get(frame.event)
        if handler is None:
            self._fail(connection, frame.ack, f"Unknown event: {frame.event}")
            return

        try:
            await asyncio.wait_for(handler(connection, frame.data), timeout=self.handler_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Handler {frame.event} for user {connection.user_id} exceeded {self.handler_timeout}s")
            self._fail(connection, frame.ack, TIMEOUT_MESSAGE)
            return
        except APIError as e:
            self._fail(connection, frame.ack, e.message)
            return
        except Exception as e:
            logger.exception(f"Unhandled error in {frame.event} handler for user {connection.user_id}")
            self._fail(connection, frame.ack, error_message(e, FALLBACK_MESSAGES.get(frame.event, "Request failed")))
            return

        if frame.ack is not None:
            connection.send_ack(frame.ack, True)

    def _fail(self, connection: Connection, ack: Any, message: str) -> None:
        if ack is not None:
            connection.send_ack(ack, False, message)
        connection.send(protocol.SESSION_ERROR, {"message": message})

    def _relay(self, connection: Connection, event: str, data: Dict[str, Any]) -> None:
        # Signaling outside a room is ignored
        session_id = connection.session_id
        if session_id is None:
            return
        self.router.broadcast(session_id, event, data, exclude=connection)

    @staticmethod
    def _require_room(connection: Connection, message: str) -> str:
        if connection.session_id is None:
            raise BadRequestError(message)
        return connection.session_id

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def _on_join(self, connection: Connection, data: Dict[str, Any]) -> None:
        session_id = data.get("sessionId")
        if not session_id or not isinstance(session_id, str):
            raise BadRequestError("sessionId is required", code=ErrorCode.MISSING_FIELD)

        self.router.check_can_join(connection, session_id)
        await self.service.ensure_participant(connection.user_id, session_id)
        self.router.join(connection, session_id)
        connection.send(protocol.SESSION_JOINED, {"sessionId": session_id})

    async def _on_leave(self, connection: Connection, data: Dict[str, Any]) -> None:
        session_id = self.router.leave(connection)
        if session_id is None:
            raise BadRequestError("You are not in a session")
        logger.info(f"Connection {connection.id} left room {session_id}")
        connection.send(protocol.SESSION_LEFT, {"sessionId": session_id})

    async def _on_chat_message(self, connection: Connection, data: Dict[str, Any]) -> None:
        session_id = self._require_room(connection, "Join a session before sending messages")
        text = data.get("text")
        if not text or not isinstance(text, str):
            raise BadRequestError("Message text is required", code=ErrorCode.MISSING_FIELD)

        await self.service.add_message(session_id, connection.user_id, text)

        self.router.broadcast(session_id, protocol.CHAT_MESSAGE, {
            "id": data.get("id") or str(_now_ms()),
            "text": text,
            "time": data.get("time") or isoformat(utcnow()),
            "author": connection.identity.author(),
            "sessionId": session_id,
        })

    async def _on_code_update(self, connection: Connection, data: Dict[str, Any]) -> None:
        session_id = self._require_room(connection, "Join a session before sharing code")
        code = data.get("code")
        if not code or not isinstance(code, str):
            raise BadRequestError("Code content is required", code=ErrorCode.MISSING_FIELD)
        language = data.get("language") or DEFAULT_LANGUAGE

        await self.service.add_code_snapshot(session_id, connection.user_id, code, language)

        self.router.broadcast(session_id, protocol.CODE_UPDATE, {
            "code": code,
            "language": language,
            "sessionId": session_id,
            "authorId": connection.user_id,
            "updatedAt": isoformat(utcnow()),
        })

    async def _on_code_run(self, connection: Connection, data: Dict[str, Any]) -> None:
        session_id = self._require_room(connection, "Join a session before running code")
        code = data.get("code")
        if not code or not isinstance(code, str):
            raise BadRequestError("Code content is required", code=ErrorCode.MISSING_FIELD)
        language = str(data.get("language") or DEFAULT_LANGUAGE).lower()

        await self.service.authorize_action(connection.user_id, session_id, "run")
        result = await self.pool.run(code, language)

        self.router.broadcast(session_id, protocol.CODE_RUN_RESULT, {
            "id": f"run-{_now_ms()}",
            "language": language,
            **result.to_dict(),
            "author": connection.identity.author(),
            "authorId": connection.user_id,
            "time": isoformat(utcnow()),
        })

    async def _on_permissions_update(self, connection: Connection, data: Dict[str, Any]) -> None:
        session_id = self._require_room(connection, "Join a session before updating permissions")
        target_user_id = data.get("userId")
        if not target_user_id or not isinstance(target_user_id, str):
            raise BadRequestError("userId is required", code=ErrorCode.MISSING_FIELD)

        changes = {}
        for key, field in (("canEdit", "can_edit"), ("canShareScreen", "can_share_screen")):
            value = data.get(key)
            if value is None:
                continue
            if not isinstance(value, bool):
                raise BadRequestError(f"{key} must be true or false", code=ErrorCode.INVALID_INPUT)
            changes[field] = value

        participant = await self.service.update_permissions(
            connection.user_id, session_id, target_user_id, changes
        )
        self.broadcast_permissions(session_id, participant, updated_by=connection.user_id)

    # ------------------------------------------------------------------
    # Hooks for the HTTP surface
    # ------------------------------------------------------------------

    def broadcast_permissions(self, session_id: str, participant, updated_by: str) -> None:
        self.router.broadcast(session_id, protocol.PERMISSIONS_UPDATE, {
            "sessionId": session_id,
            "user_id": participant.user_id,
            "role": participant.role,
            "can_edit": participant.can_edit,
            "can_share_screen": participant.can_share_screen,
            "updated_by": updated_by,
        })

    def evict(self, session_id: str, user_id: str) -> int:
        return len(self.router.evict_user(session_id, user_id))
