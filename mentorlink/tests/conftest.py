"""
Shared fixtures: in-memory database, fake identity provider and fake
WebSocket transports.
"""
import json
import sys

import pytest

from mentorlink.config.settings import Settings
from mentorlink.database import create_engine_for_url, create_session_factory, init_db
from mentorlink.realtime.gateway import ConnectionGateway
from mentorlink.repositories.sql_repository import SqlSessionRepository
from mentorlink.sandbox.executor import CodeExecutor
from mentorlink.sandbox.pool import ExecutionPool
from mentorlink.services.identity_client import IdentityError, IdentityUser
from mentorlink.services.participant_service import ParticipantService


MENTOR_ID = "user-a"
STUDENT_ID = "user-b"
OTHER_STUDENT_ID = "user-c"


# =============================================================================
# Fakes
# =============================================================================

class FakeIdentityClient:
    """Identity provider stand-in keyed by token."""

    def __init__(self, users):
        self.users = users
        self.calls = []
        self.closed = False

    async def get_user(self, token):
        self.calls.append(token)
        user = self.users.get(token)
        if user is None:
            raise IdentityError("unknown token")
        return user

    async def close(self):
        self.closed = True


class FakeTransport:
    """Collects frames the way a WebSocket would send them."""

    def __init__(self):
        self.frames = []

    async def send_text(self, text):
        self.frames.append(json.loads(text))

    def events(self, name):
        return [frame["data"] for frame in self.frames if frame["event"] == name]

    def acks(self):
        return {frame["ack"]: frame["data"] for frame in self.frames if frame["event"] == "ack"}


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def settings():
    return Settings(
        environment="test",
        database_url="sqlite+aiosqlite:///:memory:",
        identity_url="http://identity.test",
        identity_api_key="anon-key",
        handler_timeout_seconds=5.0,
        outbound_queue_size=100,
        sandbox_timeout_seconds=5.0,
        sandbox_max_output_bytes=64 * 1024,
        sandbox_max_concurrency=2,
        sandbox_max_pending=2,
        sandbox_python_bin=sys.executable,
    )


@pytest.fixture
async def engine():
    engine = create_engine_for_url("sqlite+aiosqlite:///:memory:")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def repository(session_factory):
    return SqlSessionRepository(session_factory)


@pytest.fixture
def service(repository):
    return ParticipantService(repository)


@pytest.fixture
def identity_client():
    return FakeIdentityClient({
        "token-a": IdentityUser(
            id=MENTOR_ID,
            email="mentor@example.com",
            user_metadata={"name": "Ada Mentor", "role": "mentor"},
        ),
        "token-b": IdentityUser(
            id=STUDENT_ID,
            email="bo@example.com",
            user_metadata={"name": "Bo Student", "role": "student"},
        ),
        "token-c": IdentityUser(
            id=OTHER_STUDENT_ID,
            email="cy@example.com",
            app_metadata={"role": "student"},
        ),
    })


@pytest.fixture
def executor(settings):
    return CodeExecutor(settings)


@pytest.fixture
def gateway(service, identity_client, repository, executor, settings):
    pool = ExecutionPool(executor, max_concurrency=2, max_pending=2)
    return ConnectionGateway(service, identity_client, pool, repository=repository, settings=settings)


@pytest.fixture
def connect(gateway):
    """Authenticate a token and open a connection over a FakeTransport."""
    async def _connect(token):
        identity = await gateway.authenticate(auth_token=token)
        transport = FakeTransport()
        connection = gateway.open_connection(transport, identity)
        return connection, transport
    return _connect


@pytest.fixture
def emit(gateway):
    """Send one frame through the gateway and flush every connection's outbound queue."""
    async def _emit(connection, event, data=None, ack=None):
        frame = {"event": event, "data": data}
        if ack is not None:
            frame["ack"] = ack
        await gateway.handle_frame(connection, json.dumps(frame))
        for live in list(gateway.connections.values()):
            await live.flush()
    return _emit


@pytest.fixture
async def session_with_student(service):
    """Session owned by the mentor with the student on the roster."""
    return await service.create_session(MENTOR_ID, {
        "title": "Intro to recursion",
        "participant_ids": [STUDENT_ID],
    })
