from typing import Any, Dict, Iterable, Optional

from flask import current_app, request

from gambit import EXTENSION_KEY, socketio
from gambit.errors import GambitError
from gambit.services.coordinator import Broadcaster, SessionCoordinator

NAMESPACE = '/ws'

_MOVE_KEYS = ('from', 'to', 'promotion', 'uci', 'san')


class SocketIOBroadcaster(Broadcaster):
    """Emits outbound events to individual Socket.IO connections."""

    def __init__(self, sio, namespace: str = NAMESPACE):
        self.sio = sio
        self.namespace = namespace

    def to_members(self, connection_ids: Iterable[str], event: str, payload: Any) -> None:
        for sid in connection_ids:
            self.sio.emit(event, payload, to=sid, namespace=self.namespace)

    def to_connection(self, connection_id: str, event: str, payload: Any) -> None:
        self.sio.emit(event, payload, to=connection_id, namespace=self.namespace)


def _coordinator() -> SessionCoordinator:
    return current_app.extensions[EXTENSION_KEY]


def _get_sid() -> str:
    # type: ignore: request.sid exists in Socket.IO context
    return request.sid  # type: ignore


def _payload(data) -> Dict[str, Any]:
    return data if isinstance(data, dict) else {}


def _run(action: str, fn, *args) -> Dict[str, Any]:
    try:
        return fn(*args)
    except GambitError as exc:
        current_app.logger.info(f"[rejected] action={action} sid={_get_sid()} error={exc.code}: {exc}")
        return exc.to_dict()


def handle_connect(auth=None):
    current_app.logger.debug(f"[connect] sid={_get_sid()}")


def handle_disconnect(reason=None):
    left = _coordinator().disconnect(_get_sid())
    if left:
        current_app.logger.info(f"[disconnect] sid={_get_sid()} left={left}")


def handle_create_room(data=None):
    data = _payload(data)
    return _run('create_room', _coordinator().create_room, _get_sid(), data.get('display_name'))


def handle_join_room(data=None):
    data = _payload(data)
    return _run('join_room', _coordinator().join_room, _get_sid(), data.get('code'), data.get('display_name'))


def handle_submit_secret(data=None):
    data = _payload(data)
    return _run('submit_secret', _coordinator().submit_secret, _get_sid(), data.get('code'), data.get('secret'))


def handle_make_move(data=None):
    data = _payload(data)
    move = {k: data[k] for k in _MOVE_KEYS if data.get(k)}
    return _run('make_move', _coordinator().make_move, _get_sid(), data.get('code'), move)


def handle_request_room_info(data=None) -> Optional[Dict[str, Any]]:
    return _coordinator().room_info(_payload(data).get('code'))


def handle_leave_room(data=None):
    data = _payload(data)
    return _run('leave_room', _coordinator().leave_room, _get_sid(), data.get('code'))


def register_socketio_handlers() -> None:
    """Register Socket.IO event handlers on namespace '/ws'."""
    socketio.on_event('connect', handle_connect, namespace=NAMESPACE)
    socketio.on_event('disconnect', handle_disconnect, namespace=NAMESPACE)
    socketio.on_event('create_room', handle_create_room, namespace=NAMESPACE)
    socketio.on_event('join_room', handle_join_room, namespace=NAMESPACE)
    socketio.on_event('submit_secret', handle_submit_secret, namespace=NAMESPACE)
    socketio.on_event('make_move', handle_make_move, namespace=NAMESPACE)
    socketio.on_event('request_room_info', handle_request_room_info, namespace=NAMESPACE)
    socketio.on_event('leave_room', handle_leave_room, namespace=NAMESPACE)
