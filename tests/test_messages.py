#!/usr/bin/env python3
''' test message decoding and state snapshots '''

import pytest

from hassbridge.errors import ProtocolError
from hassbridge.messages import Envelope, StateSnapshot, command


def test_decode_result():
    ''' a result frame keeps id, success and payload '''
    env = Envelope.decode('{"id": 3, "type": "result", "success": true, "result": [1, 2]}')
    assert env.id == 3
    assert env.type == "result"
    assert env.success
    assert env.result == [1, 2]


def test_decode_error_fields():
    ''' error code and message come from the error object '''
    env = Envelope.decode(
        '{"id": 4, "type": "result", "success": false, "error": {"code": "not_found", "message": "nope"}}'
    )
    assert not env.success
    assert env.error_code == "not_found"
    assert env.error_message == "nope"


@pytest.mark.parametrize("text", ["{not json", "[1, 2]", '"auth_ok"'])
def test_decode_garbage(text):
    ''' anything but a json object is a protocol error '''
    with pytest.raises(ProtocolError):
        Envelope.decode(text)


def test_boolean_id_is_not_an_id():
    ''' json true is not a message id '''
    env = Envelope.from_dict({"id": True, "type": "result"})
    assert env.id is None


def test_new_state(state_factory):
    ''' state_changed events carry a snapshot '''
    env = Envelope.from_dict({
        "id": 1,
        "type": "event",
        "event": {"event_type": "state_changed", "data": {"new_state": state_factory(state="paused")}},
    })
    snap = env.new_state()
    assert snap is not None
    assert snap.entity_id == "media_player.living_room"
    assert snap.state == "paused"
    assert snap.title == "Teardrop"


def test_new_state_removed_entity():
    ''' a null new_state means the entity went away '''
    env = Envelope.from_dict({
        "id": 1,
        "type": "event",
        "event": {"event_type": "state_changed", "data": {"entity_id": "media_player.x", "new_state": None}},
    })
    assert env.new_state() is None


def test_new_state_other_event():
    env = Envelope.from_dict({"id": 1, "type": "event", "event": {"event_type": "call_service", "data": {}}})
    assert env.new_state() is None


def test_snapshot_coercion():
    ''' wrongly typed attributes count as absent '''
    snap = StateSnapshot.from_state({
        "entity_id": "media_player.den",
        "state": "playing",
        "attributes": {
            "shuffle": "yes",
            "repeat": 1,
            "media_duration": "330",
            "media_position": True,
            "volume_level": 0.5,
            "media_title": 42,
            "media_artist": ["Portishead", "", 7, "Tricky"],
        },
    })
    assert snap.shuffle is None
    assert snap.repeat is None
    assert snap.duration is None
    assert snap.position is None
    assert snap.volume == 0.5
    assert snap.title is None
    assert snap.artist == "Portishead, Tricky"
    assert snap.is_media_player()
    assert not snap.is_music()


def test_snapshot_without_attributes():
    snap = StateSnapshot.from_state({"entity_id": "light.kitchen", "state": "on"})
    assert snap.domain == "light"
    assert not snap.is_media_player()
    assert snap.title is None


def test_command_omits_none():
    ''' unset fields are left out of the frame '''
    assert command(5, "subscribe_events", event_type=None) == {"id": 5, "type": "subscribe_events"}
    assert command(6, "subscribe_events", event_type="state_changed") == {
        "id": 6,
        "type": "subscribe_events",
        "event_type": "state_changed",
    }
