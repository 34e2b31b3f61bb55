import random
import re
import threading

import chess
import pytest

from gambit.errors import AllocationExhausted, NotInRoom, RoomFull, RoomNotFound
from gambit.models import RoomStatus
from gambit.services.registry import RoomRegistry, RoomStore


def test_create_attaches_creator_as_first_player(registry):
    code = registry.create('Alice', 'sid-a')
    assert re.fullmatch(r'[A-Z0-9]{4}', code)
    room = registry.get(code)
    assert [p.display_name for p in room.players] == ['Alice']
    assert room.status is RoomStatus.WAITING


def test_codes_are_unique_among_live_rooms(registry):
    codes = {registry.create(f'P{i}', f'sid-{i}') for i in range(200)}
    assert len(codes) == 200
    assert len(registry.store) == 200


def test_collision_retries_with_fresh_code(match):
    store = RoomStore()
    seeded = RoomRegistry(match.new_position, match.render, store=store, rng=random.Random(7), backoff=0)
    first = seeded.create('Alice', 'sid-a')
    # same seed replays the same first code, forcing one collision
    delays = []
    replay = RoomRegistry(
        match.new_position, match.render, store=store, rng=random.Random(7),
        backoff=0.01, sleep=delays.append,
    )
    second = replay.create('Bob', 'sid-b')
    assert second != first
    assert delays == [0.01]


def test_allocation_exhausted_when_every_code_collides(match):
    class FixedRng(random.Random):
        def choices(self, population, k=1, **kwargs):
            return ['A'] * k

    registry = RoomRegistry(match.new_position, match.render, rng=FixedRng(), max_attempts=3, backoff=0)
    registry.create('Alice', 'sid-a')
    with pytest.raises(AllocationExhausted):
        registry.create('Bob', 'sid-b')


def test_code_length_below_minimum_is_rejected(match):
    with pytest.raises(ValueError):
        RoomRegistry(match.new_position, match.render, code_length=3)


def test_join_preserves_order_and_caps_at_two(registry):
    code = registry.create('Alice', 'sid-a')
    registry.join(code.lower(), 'sid-b', '  Bob  ')
    room = registry.get(code)
    assert [p.connection_id for p in room.players] == ['sid-a', 'sid-b']
    assert room.players[1].display_name == 'Bob'
    with pytest.raises(RoomFull):
        registry.join(code, 'sid-c', 'Cara')
    assert len(room.players) == 2


def test_join_twice_is_idempotent(registry):
    code = registry.create('Alice', 'sid-a')
    registry.join(code, 'sid-a', 'Alice')
    assert len(registry.get(code).players) == 1


def test_join_unknown_code(registry):
    registry.create('Alice', 'sid-a')
    with pytest.raises(RoomNotFound):
        registry.join('ZZZZ', 'sid-b', 'Bob')
    assert len(registry.store) == 1


def test_blank_display_name_defaults_to_guest(registry):
    code = registry.create('   ', 'sid-a')
    assert registry.get(code).players[0].display_name == 'Guest'


def test_leave_last_player_destroys_room(registry):
    code = registry.create('Alice', 'sid-a')
    assert registry.leave(code, 'sid-a') is None
    assert code not in registry.store
    with pytest.raises(RoomNotFound):
        registry.join(code, 'sid-b', 'Bob')


def test_leave_mid_match_resets_to_waiting(registry, match, vault):
    code = registry.create('Alice', 'sid-a')
    registry.join(code, 'sid-b', 'Bob')
    registry.store_secret(code, 'sid-a', vault.encrypt('alpha'))
    registry.store_secret(code, 'sid-b', vault.encrypt('beta'))
    room = registry.get(code)
    match.start(room)
    match.apply_move(room, {'from': 'e2', 'to': 'e4'})

    remaining = registry.leave(code, 'sid-a')
    assert remaining is room
    assert room.status is RoomStatus.WAITING
    assert room.position.fen() == chess.STARTING_FEN
    assert [p.connection_id for p in room.players] == ['sid-b']
    assert set(room.secrets) == {'sid-b'}


def test_store_secret_requires_membership(registry, vault):
    code = registry.create('Alice', 'sid-a')
    with pytest.raises(NotInRoom):
        registry.store_secret(code, 'sid-x', vault.encrypt('alpha'))


def test_store_secret_replaces_envelope(registry, vault):
    code = registry.create('Alice', 'sid-a')
    first = vault.encrypt('alpha')
    second = vault.encrypt('omega')
    registry.store_secret(code, 'sid-a', first)
    registry.store_secret(code, 'sid-a', second)
    assert registry.get(code).secrets['sid-a'] is second
    assert vault.decrypt(first) == 'alpha'


def test_info_redacts_secrets(registry, vault):
    code = registry.create('Alice', 'sid-a')
    registry.join(code, 'sid-b', 'Bob')
    registry.store_secret(code, 'sid-a', vault.encrypt('alpha'))
    info = registry.info(code)
    assert info['code'] == code
    assert info['status'] == 'waiting'
    assert info['position'] == chess.STARTING_FEN
    assert info['players'] == [
        {'id': 'sid-a', 'name': 'Alice', 'side': 'white', 'has_secret': True},
        {'id': 'sid-b', 'name': 'Bob', 'side': 'black', 'has_secret': False},
    ]
    assert 'alpha' not in repr(info)


def test_info_unknown_code_is_none(registry):
    assert registry.info('ZZZZ') is None


def test_locked_detects_room_already_destroyed(registry):
    code = registry.create('Alice', 'sid-a')
    room = registry.get(code)
    registry.store.delete(room)
    with pytest.raises(RoomNotFound):
        with registry.locked(code):
            pass


def test_locked_raises_when_room_destroyed_while_waiting_for_lock(registry):
    code = registry.create('Alice', 'sid-a')
    outcome = []

    def wait_for_room():
        try:
            with registry.locked(code):
                outcome.append('entered')
        except RoomNotFound:
            outcome.append('not-found')

    with registry.locked(code):
        waiter = threading.Thread(target=wait_for_room)
        waiter.start()
        waiter.join(0.2)
        assert waiter.is_alive()
        assert registry.leave(code, 'sid-a') is None

    waiter.join(5)
    assert not waiter.is_alive()
    assert outcome == ['not-found']


def test_memberships(registry):
    a = registry.create('Alice', 'sid-a')
    b = registry.create('Bob', 'sid-b')
    registry.join(b, 'sid-a', 'Alice')
    assert sorted(registry.memberships('sid-a')) == sorted([a, b])
    assert registry.memberships('sid-z') == []
