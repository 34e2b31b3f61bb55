import random

import click
from flask import Flask
from flask_cors import CORS
from flask_socketio import SocketIO

from config import Config

socketio = SocketIO(async_mode=None)

EXTENSION_KEY = 'gambit'


def build_coordinator(config, broadcaster):
    """Wire registry, match state machine and vault from app config."""
    from gambit.services.coordinator import SessionCoordinator
    from gambit.services.match import MatchStateMachine
    from gambit.services.registry import RoomRegistry
    from gambit.services.rules import ChessRulesEngine
    from gambit.services.vault import SecretVault

    vault = SecretVault.from_config(
        config.get('MASTER_KEY'),
        allow_ephemeral=bool(config.get('ALLOW_EPHEMERAL_KEY', False)),
    )
    match = MatchStateMachine(ChessRulesEngine())
    seed = config.get('ROOM_CODE_SEED')
    registry = RoomRegistry(
        new_position=match.new_position,
        render_position=match.render,
        rng=random.Random(seed) if seed is not None else None,
        code_length=int(config.get('ROOM_CODE_LENGTH', 4)),
        max_attempts=int(config.get('ROOM_CODE_MAX_ATTEMPTS', 16)),
        backoff=int(config.get('ROOM_CODE_BACKOFF_MS', 5)) / 1000.0,
    )
    return SessionCoordinator(registry, match, vault, broadcaster)


def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)
    flask_app.logger.setLevel(flask_app.config.get('LOG_LEVEL', 'INFO'))

    origins = flask_app.config.get('CORS_ORIGINS') or []
    CORS(flask_app, supports_credentials=True, origins=origins)
    socketio.init_app(flask_app, cors_allowed_origins=origins)

    from gambit.socketio_events import NAMESPACE, SocketIOBroadcaster, register_socketio_handlers
    coordinator = build_coordinator(flask_app.config, SocketIOBroadcaster(socketio, NAMESPACE))
    flask_app.extensions[EXTENSION_KEY] = coordinator
    if coordinator.vault.is_ephemeral:
        flask_app.logger.warning(
            "[startup] secret vault is in EPHEMERAL key mode; set MASTER_KEY before deploying"
        )
    else:
        flask_app.logger.info("[startup] secret vault using configured key")

    from gambit.main import main
    flask_app.register_blueprint(main)

    from gambit.api.rooms import rooms
    flask_app.register_blueprint(rooms, url_prefix='/api/rooms')

    register_socketio_handlers()

    @click.command('gen-key')
    def gen_key_command():
        """Prints a fresh base64 MASTER_KEY for the secret vault."""
        from gambit.services.vault import generate_master_key
        click.echo(generate_master_key())

    flask_app.cli.add_command(gen_key_command)

    return flask_app
