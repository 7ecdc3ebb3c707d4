#!/usr/bin/env python3
''' test translating player verbs into service calls '''

import pytest

from hassbridge.commands import ServiceCaller
from hassbridge.errors import CommandFailed
from hassbridge.messages import Envelope


class Recorder:
    ''' captures send_command calls '''

    def __init__(self, entity="media_player.living_room", error=None):
        self.calls = []
        self.entity = entity
        self.error = error

    async def send_command(self, mtype, **fields):
        self.calls.append((mtype, fields))
        if self.error is not None:
            raise self.error
        return len(self.calls), Envelope.from_dict({"id": len(self.calls), "type": "result", "success": True})

    async def target_entity(self):
        return self.entity


@pytest.mark.asyncio
async def test_play_pause_payload():
    ''' the verb becomes a call_service aimed at the followed entity '''
    rec = Recorder()
    caller = ServiceCaller(rec.send_command, rec.target_entity)
    assert await caller.play_pause() is True
    mtype, fields = rec.calls[0]
    assert mtype == "call_service"
    assert fields["domain"] == "media_player"
    assert fields["service"] == "media_play_pause"
    assert fields["target"] == {"entity_id": "media_player.living_room"}
    assert fields["service_data"] is None
    assert fields["return_response"] is False


@pytest.mark.asyncio
@pytest.mark.parametrize("method, service", [
    ("play", "media_play"),
    ("pause", "media_pause"),
    ("stop", "media_stop"),
    ("next", "media_next_track"),
    ("previous", "media_previous_track"),
])
async def test_transport_verbs(method, service):
    rec = Recorder()
    caller = ServiceCaller(rec.send_command, rec.target_entity)
    await getattr(caller, method)()
    assert rec.calls[0][1]["service"] == service


@pytest.mark.asyncio
async def test_no_entity_yet():
    ''' nothing is sent before any media_player was seen '''
    rec = Recorder(entity=None)
    caller = ServiceCaller(rec.send_command, rec.target_entity)
    assert await caller.play() is False
    assert not rec.calls


@pytest.mark.asyncio
async def test_set_volume_is_clamped():
    rec = Recorder()
    caller = ServiceCaller(rec.send_command, rec.target_entity)
    await caller.set_volume(1.4)
    await caller.set_volume(-0.2)
    assert [c[1]["service_data"] for c in rec.calls] == [{"volume_level": 1.0}, {"volume_level": 0.0}]
    assert rec.calls[0][1]["service"] == "volume_set"


@pytest.mark.asyncio
async def test_set_shuffle():
    rec = Recorder()
    caller = ServiceCaller(rec.send_command, rec.target_entity)
    await caller.set_shuffle(True)
    assert rec.calls[0][1]["service"] == "shuffle_set"
    assert rec.calls[0][1]["service_data"] == {"shuffle": True}


@pytest.mark.asyncio
@pytest.mark.parametrize("loop_status, repeat", [("None", "off"), ("Track", "one"), ("Playlist", "all")])
async def test_set_loop_status(loop_status, repeat):
    rec = Recorder()
    caller = ServiceCaller(rec.send_command, rec.target_entity)
    await caller.set_loop_status(loop_status)
    assert rec.calls[0][1]["service"] == "repeat_set"
    assert rec.calls[0][1]["service_data"] == {"repeat": repeat}


@pytest.mark.asyncio
async def test_invalid_values():
    rec = Recorder()
    caller = ServiceCaller(rec.send_command, rec.target_entity)
    with pytest.raises(ValueError):
        await caller.set_loop_status("Forever")
    with pytest.raises(ValueError):
        await caller.call("Seek")
    assert not rec.calls


@pytest.mark.asyncio
async def test_hub_errors_propagate():
    rec = Recorder(error=CommandFailed("not_supported", "Entity does not support this service."))
    caller = ServiceCaller(rec.send_command, rec.target_entity)
    with pytest.raises(CommandFailed):
        await caller.next()
