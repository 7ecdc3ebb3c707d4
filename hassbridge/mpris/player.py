"""D-Bus interface objects for /org/mpris/MediaPlayer2."""

# No `from __future__ import annotations` here: dbus_fast reads the D-Bus
# signatures straight from the annotation strings.

import asyncio
import logging
from typing import Any, Dict, Optional, Set

from dbus_fast import DBusError, Variant
from dbus_fast.constants import PropertyAccess
from dbus_fast.service import ServiceInterface, dbus_property, method

from ..commands import ServiceCaller
from ..errors import HassBridgeError
from ..projection import PlayerProperties, TrackMetadata

log = logging.getLogger(__name__)

OBJECT_PATH = "/org/mpris/MediaPlayer2"
ROOT_IFACE = "org.mpris.MediaPlayer2"
PLAYER_IFACE = ROOT_IFACE + ".Player"
ERROR_FAILED = ROOT_IFACE + ".hassbridge.Failed"

IDENTITY = "HASS media_player to MPRIS Bridge"
DESKTOP_ENTRY = "hassbridge"
NO_TRACK = "/org/mpris/MediaPlayer2/TrackList/NoTrack"


def metadata_variants(md: Optional[TrackMetadata]) -> Dict[str, Variant]:
    if md is None:
        return {"mpris:trackid": Variant("o", NO_TRACK)}
    return {
        "mpris:trackid": Variant("o", md.trackid),
        "mpris:length": Variant("x", md.length),
        "mpris:artUrl": Variant("s", md.art_url),
        "xesam:album": Variant("s", md.album),
        "xesam:artist": Variant("as", [md.artist]),
        "xesam:title": Variant("s", md.title),
    }


class MediaPlayer2Interface(ServiceInterface):
    """org.mpris.MediaPlayer2: a remote player can't be raised or quit."""

    def __init__(self) -> None:
        super().__init__(ROOT_IFACE)

    @method()
    def Raise(self):
        return None

    @method()
    def Quit(self):
        return None

    @dbus_property(access=PropertyAccess.READ)
    def CanQuit(self) -> "b":
        return False

    @dbus_property(access=PropertyAccess.READ)
    def Fullscreen(self) -> "b":
        return False

    @dbus_property(access=PropertyAccess.READ)
    def CanSetFullscreen(self) -> "b":
        return False

    @dbus_property(access=PropertyAccess.READ)
    def CanRaise(self) -> "b":
        return False

    @dbus_property(access=PropertyAccess.READ)
    def HasTrackList(self) -> "b":
        return False

    @dbus_property(access=PropertyAccess.READ)
    def Identity(self) -> "s":
        return IDENTITY

    @dbus_property(access=PropertyAccess.READ)
    def DesktopEntry(self) -> "s":
        return DESKTOP_ENTRY

    @dbus_property(access=PropertyAccess.READ)
    def SupportedUriSchemes(self) -> "as":
        return []

    @dbus_property(access=PropertyAccess.READ)
    def SupportedMimeTypes(self) -> "as":
        return []


class PlayerInterface(ServiceInterface):
    """
    org.mpris.MediaPlayer2.Player backed by the projected properties.

    apply() swaps in a new property set and announces what changed. Method
    calls and property writes are forwarded to Home Assistant; the published
    values only move once the hub reports the new state.
    """

    def __init__(self, caller: ServiceCaller) -> None:
        super().__init__(PLAYER_IFACE)
        self._caller = caller
        self._status = "Stopped"
        self._loop_status = "None"
        self._shuffle = False
        self._volume = 0.0
        self._position = 0
        self._track: Optional[TrackMetadata] = None
        self._pending: Set[asyncio.Task] = set()

    def apply(self, props: PlayerProperties) -> Dict[str, Any]:
        """Replace the published values; returns (and emits) the changed ones."""
        changed: Dict[str, Any] = {}

        status = props.playback_status.mpris_value
        if status != self._status:
            self._status = changed["PlaybackStatus"] = status
        loop_status = props.loop_status.value
        if loop_status != self._loop_status:
            self._loop_status = changed["LoopStatus"] = loop_status
        if props.shuffle != self._shuffle:
            self._shuffle = changed["Shuffle"] = props.shuffle
        if props.volume != self._volume:
            self._volume = changed["Volume"] = props.volume
        if props.metadata is not None and props.metadata != self._track:
            self._track = props.metadata
            changed["Metadata"] = metadata_variants(self._track)

        # Position is never announced (clients poll it or listen for Seeked)
        self._position = props.position

        if changed:
            self.emit_properties_changed(changed)
        return changed

    # ── Methods ─────────────────────────────────────────────────────────────

    async def _forward(self, verb: str) -> None:
        try:
            await self._caller.call(verb)
        except HassBridgeError as exc:
            log.error("%s failed: %s", verb, exc)
            raise DBusError(ERROR_FAILED, str(exc)) from exc

    @method()
    async def Play(self):
        await self._forward("Play")

    @method()
    async def Pause(self):
        await self._forward("Pause")

    @method()
    async def PlayPause(self):
        await self._forward("PlayPause")

    @method()
    async def Stop(self):
        await self._forward("Stop")

    @method()
    async def Next(self):
        await self._forward("Next")

    @method()
    async def Previous(self):
        await self._forward("Previous")

    # ── Properties ──────────────────────────────────────────────────────────

    def _spawn(self, coro) -> None:
        # property setters are synchronous; the service call runs detached
        task = asyncio.get_running_loop().create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._setter_done)

    def _setter_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log.error("property write failed: %s", exc)

    @dbus_property(access=PropertyAccess.READ)
    def PlaybackStatus(self) -> "s":
        return self._status

    @dbus_property()
    def LoopStatus(self) -> "s":
        return self._loop_status

    @LoopStatus.setter
    def LoopStatus(self, value: "s"):
        if value not in ("None", "Track", "Playlist"):
            raise DBusError("org.freedesktop.DBus.Error.InvalidArgs", f"invalid LoopStatus: {value}")
        self._spawn(self._caller.set_loop_status(value))

    @dbus_property()
    def Rate(self) -> "d":
        return 1.0

    @Rate.setter
    def Rate(self, value: "d"):
        # fixed rate; MPRIS allows ignoring writes within [MinimumRate, MaximumRate]
        return None

    @dbus_property()
    def Shuffle(self) -> "b":
        return self._shuffle

    @Shuffle.setter
    def Shuffle(self, value: "b"):
        self._spawn(self._caller.set_shuffle(value))

    @dbus_property(access=PropertyAccess.READ)
    def Metadata(self) -> "a{sv}":
        return metadata_variants(self._track)

    @dbus_property()
    def Volume(self) -> "d":
        return self._volume

    @Volume.setter
    def Volume(self, value: "d"):
        self._spawn(self._caller.set_volume(value))

    @dbus_property(access=PropertyAccess.READ)
    def Position(self) -> "x":
        return self._position

    @dbus_property(access=PropertyAccess.READ)
    def MinimumRate(self) -> "d":
        return 1.0

    @dbus_property(access=PropertyAccess.READ)
    def MaximumRate(self) -> "d":
        return 1.0

    @dbus_property(access=PropertyAccess.READ)
    def CanGoNext(self) -> "b":
        return True

    @dbus_property(access=PropertyAccess.READ)
    def CanGoPrevious(self) -> "b":
        return True

    @dbus_property(access=PropertyAccess.READ)
    def CanPlay(self) -> "b":
        return True

    @dbus_property(access=PropertyAccess.READ)
    def CanPause(self) -> "b":
        return True

    @dbus_property(access=PropertyAccess.READ)
    def CanSeek(self) -> "b":
        return False

    @dbus_property(access=PropertyAccess.READ)
    def CanControl(self) -> "b":
        return True
