import os
import random
import sys
import pytest

# Ensure the backend root (containing the `gambit` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from gambit import create_app, socketio
from gambit.services.coordinator import Broadcaster, SessionCoordinator
from gambit.services.match import MatchStateMachine
from gambit.services.registry import RoomRegistry
from gambit.services.rules import ChessRulesEngine
from gambit.services.vault import SecretVault

TEST_KEY = '00112233445566778899aabbccddeeff00112233445566778899aabbccddeeff'


class TestConfig:
    __test__ = False

    TESTING = True
    SECRET_KEY = 'test-secret'
    GAMBIT_PROFILE = 'development'
    MASTER_KEY = TEST_KEY
    ALLOW_EPHEMERAL_KEY = False
    ROOM_CODE_LENGTH = 4
    ROOM_CODE_MAX_ATTEMPTS = 16
    ROOM_CODE_BACKOFF_MS = 0
    LOG_LEVEL = 'DEBUG'
    CORS_ORIGINS = ['http://localhost:5173']


class RecordingBroadcaster(Broadcaster):
    """Collects (recipient, event, payload) triples in delivery order."""

    def __init__(self):
        self.sent = []

    def to_members(self, connection_ids, event, payload):
        for sid in connection_ids:
            self.sent.append((sid, event, payload))

    def to_connection(self, connection_id, event, payload):
        self.sent.append((connection_id, event, payload))

    def events(self, name):
        return [(sid, payload) for sid, event, payload in self.sent if event == name]

    def received_by(self, sid):
        return [event for recipient, event, _ in self.sent if recipient == sid]

    def clear(self):
        self.sent.clear()


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    with application.app_context():
        yield application


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


def _sio_client(flask_app):
    return socketio.test_client(
        flask_app,
        flask_test_client=flask_app.test_client(),
        namespace='/ws'
    )


@pytest.fixture()
def sio_factory(flask_app):
    clients = []

    def make():
        test_client = _sio_client(flask_app)
        clients.append(test_client)
        return test_client

    yield make
    for test_client in clients:
        try:
            if test_client.is_connected('/ws'):
                test_client.disconnect(namespace='/ws')
        except RuntimeError:
            pass


@pytest.fixture()
def vault():
    return SecretVault(bytes.fromhex(TEST_KEY))


@pytest.fixture()
def rules():
    return ChessRulesEngine()


@pytest.fixture()
def match(rules):
    return MatchStateMachine(rules)


@pytest.fixture()
def registry(match):
    return RoomRegistry(
        new_position=match.new_position,
        render_position=match.render,
        rng=random.Random(1234),
        backoff=0,
    )


@pytest.fixture()
def broadcaster():
    return RecordingBroadcaster()


@pytest.fixture()
def coordinator(registry, match, vault, broadcaster):
    return SessionCoordinator(registry, match, vault, broadcaster)
