"""Error taxonomy for rooms, matches and the secret vault.

Every error carries a stable snake_case ``code`` so the transport can ack it
to the requesting connection without leaking internals.
"""


class GambitError(Exception):
    """Base class for all errors surfaced by the game server."""
    code = 'gambit_error'

    def to_dict(self):
        return {'ok': False, 'error': self.code, 'message': str(self)}


# ---- Membership ----

class RoomNotFound(GambitError):
    code = 'room_not_found'

    def __init__(self, room_code):
        self.room_code = room_code
        super().__init__(f"Room {room_code} not found")


class RoomFull(GambitError):
    code = 'room_full'

    def __init__(self, room_code):
        self.room_code = room_code
        super().__init__(f"Room {room_code} is full")


class NotInRoom(GambitError):
    code = 'not_in_room'

    def __init__(self, room_code, connection_id):
        self.room_code = room_code
        self.connection_id = connection_id
        super().__init__(f"Connection is not a player in room {room_code}")


class AllocationExhausted(GambitError):
    """No free room code was found within the retry budget."""
    code = 'allocation_exhausted'


# ---- Match ----

class EmptySecret(GambitError):
    code = 'empty_secret'

    def __init__(self):
        super().__init__("Secret must not be empty")


class IllegalMove(GambitError):
    code = 'illegal_move'


class AlreadyStarted(GambitError):
    code = 'already_started'


class InvalidStateTransition(GambitError):
    code = 'invalid_state_transition'


# ---- Vault ----

class VaultError(GambitError):
    code = 'vault_error'


class TamperedOrWrongKey(VaultError):
    code = 'tampered_or_wrong_key'

    def __init__(self):
        super().__init__("Secret envelope failed authentication")


class UnsupportedFormatVersion(VaultError):
    code = 'unsupported_format_version'

    def __init__(self, version):
        self.version = version
        super().__init__(f"Unsupported secret envelope format version {version!r}")


class VaultConfigurationError(VaultError):
    code = 'vault_configuration_error'
