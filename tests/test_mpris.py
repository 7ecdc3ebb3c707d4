#!/usr/bin/env python3
''' test the MPRIS player interface without a bus '''

import asyncio

import pytest
from dbus_fast import DBusError

from hassbridge.errors import CommandFailed
from hassbridge.mpris.player import (
    ERROR_FAILED,
    NO_TRACK,
    MediaPlayer2Interface,
    PlayerInterface,
    metadata_variants,
)
from hassbridge.projection import LoopStatus, PlaybackStatus, PlayerProperties, TrackMetadata

TRACK = TrackMetadata(
    trackid="/org/hassbridge/track/abc",
    length=330_000_000,
    art_url="file:///tmp/art/1",
    album="Mezzanine",
    artist="Massive Attack",
    title="Teardrop",
)


def props(status=PlaybackStatus.PLAYING, metadata=TRACK, **kwargs):
    values = {
        "loop_status": LoopStatus.NONE,
        "shuffle": False,
        "volume": 0.35,
        "position": 12_500_000,
    }
    values.update(kwargs)
    return PlayerProperties(playback_status=status, metadata=metadata, **values)


class FakeCaller:
    ''' stands in for ServiceCaller '''

    def __init__(self, error=None):
        self.calls = []
        self.error = error

    async def _record(self, *call):
        self.calls.append(call)
        if self.error is not None:
            raise self.error
        return True

    def call(self, verb, service_data=None):
        return self._record(verb, service_data)

    def set_volume(self, level):
        return self._record("Volume", level)

    def set_shuffle(self, shuffle):
        return self._record("Shuffle", shuffle)

    def set_loop_status(self, loop_status):
        return self._record("LoopStatus", loop_status)


@pytest.mark.asyncio
async def test_apply_reports_changes_only():
    ''' unchanged values are not announced again '''
    player = PlayerInterface(FakeCaller())
    changed = player.apply(props())
    assert set(changed) == {"PlaybackStatus", "Volume", "Metadata"}
    assert changed["PlaybackStatus"] == "Playing"

    assert player.apply(props()) == {}

    changed = player.apply(props(status=PlaybackStatus.PAUSED, position=20_000_000))
    assert changed == {"PlaybackStatus": "Paused"}
    assert player.Position == 20_000_000


@pytest.mark.asyncio
async def test_idle_is_published_as_stopped():
    player = PlayerInterface(FakeCaller())
    player.apply(props())
    changed = player.apply(props(status=PlaybackStatus.IDLE))
    assert changed["PlaybackStatus"] == "Stopped"
    assert player.PlaybackStatus == "Stopped"


@pytest.mark.asyncio
async def test_metadata_survives_update_without_track():
    ''' an update without metadata leaves the published track alone '''
    player = PlayerInterface(FakeCaller())
    player.apply(props())
    changed = player.apply(props(metadata=None, loop_status=LoopStatus.PLAYLIST, shuffle=True))
    assert changed == {"LoopStatus": "Playlist", "Shuffle": True}
    assert player.Metadata["xesam:title"].value == "Teardrop"


def test_metadata_variants():
    md = metadata_variants(TRACK)
    assert md["mpris:trackid"].signature == "o"
    assert md["mpris:length"].value == 330_000_000
    assert md["xesam:artist"].value == ["Massive Attack"]
    assert metadata_variants(None)["mpris:trackid"].value == NO_TRACK


@pytest.mark.asyncio
async def test_forward_calls_service():
    caller = FakeCaller()
    player = PlayerInterface(caller)
    await player._forward("PlayPause")  # pylint: disable=protected-access
    assert caller.calls == [("PlayPause", None)]


@pytest.mark.asyncio
async def test_forward_maps_hub_errors():
    ''' a failed service call surfaces as a D-Bus error '''
    player = PlayerInterface(FakeCaller(error=CommandFailed("not_supported", "nope")))
    with pytest.raises(DBusError) as excinfo:
        await player._forward("Next")  # pylint: disable=protected-access
    assert excinfo.value.type == ERROR_FAILED


@pytest.mark.asyncio
async def test_setters_forward():
    ''' property writes go to the hub; the published value waits for the echo '''
    caller = FakeCaller()
    player = PlayerInterface(caller)
    player.Volume = 0.8
    player.Shuffle = True
    player.LoopStatus = "Track"
    await asyncio.sleep(0)
    await asyncio.sleep(0)
    assert ("Volume", 0.8) in caller.calls
    assert ("Shuffle", True) in caller.calls
    assert ("LoopStatus", "Track") in caller.calls
    assert player.Volume == 0.0


@pytest.mark.asyncio
async def test_invalid_loop_status():
    player = PlayerInterface(FakeCaller())
    with pytest.raises(DBusError):
        player.LoopStatus = "Sometimes"


@pytest.mark.asyncio
async def test_failed_setter_is_logged(caplog):
    caller = FakeCaller(error=CommandFailed("not_supported", "nope"))
    player = PlayerInterface(caller)
    player.Shuffle = True
    for _ in range(5):
        await asyncio.sleep(0)
    assert "property write failed" in caplog.text


def test_capabilities():
    player = PlayerInterface(FakeCaller())
    assert player.CanControl
    assert player.CanPlay and player.CanPause
    assert not player.CanSeek
    assert player.Rate == 1.0
    root = MediaPlayer2Interface()
    assert not root.CanQuit
    assert not root.HasTrackList
    assert root.DesktopEntry == "hassbridge"
