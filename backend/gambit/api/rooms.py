from flask import Blueprint, current_app, jsonify

from gambit import EXTENSION_KEY
from gambit.errors import RoomNotFound
from gambit.models import normalize_code

rooms = Blueprint('rooms', __name__)


@rooms.route('/<string:room_code>', methods=['GET'])
def get_room(room_code):
    """
    Returns the public snapshot of a live room.
    """
    snapshot = current_app.extensions[EXTENSION_KEY].room_info(room_code)
    if snapshot is None:
        return jsonify(RoomNotFound(normalize_code(room_code)).to_dict()), 404
    return jsonify(snapshot), 200
