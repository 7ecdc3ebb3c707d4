"""Project Home Assistant media_player snapshots onto MPRIS player properties."""

from __future__ import annotations

import asyncio
import hashlib
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Union

from .artwork import ArtworkCache
from .eventbus import EventBus
from .messages import Envelope, StateSnapshot

log = logging.getLogger(__name__)

TRACKID_PREFIX = "/org/hassbridge/track/"


class PlaybackStatus(str, Enum):
    PLAYING = "Playing"
    PAUSED = "Paused"
    IDLE = "Idle"
    STOPPED = "Stopped"

    @property
    def mpris_value(self) -> str:
        """MPRIS has no idle state; an idle player reads as stopped."""
        return "Stopped" if self is PlaybackStatus.IDLE else self.value


class LoopStatus(str, Enum):
    NONE = "None"
    TRACK = "Track"
    PLAYLIST = "Playlist"


# https://www.home-assistant.io/integrations/media_player#the-state-of-a-media-player
_STATES = {
    "playing": PlaybackStatus.PLAYING,
    "paused": PlaybackStatus.PAUSED,
    "buffering": PlaybackStatus.PAUSED,
    "idle": PlaybackStatus.IDLE,
    "off": PlaybackStatus.STOPPED,
    "standby": PlaybackStatus.STOPPED,
}

_REPEAT = {
    "all": LoopStatus.PLAYLIST,
    "one": LoopStatus.TRACK,
}


def parse_playback_status(state: Optional[str]) -> PlaybackStatus:
    return _STATES.get((state or "").strip().lower(), PlaybackStatus.IDLE)


def parse_loop_status(repeat: Optional[str]) -> LoopStatus:
    return _REPEAT.get((repeat or "").strip().lower(), LoopStatus.NONE)


def to_microseconds(seconds: Optional[float]) -> int:
    if seconds is None or seconds < 0:
        return 0
    return int(round(seconds * 1_000_000))


def _clamp_volume(volume: Optional[float]) -> float:
    if volume is None:
        return 0.0
    return min(1.0, max(0.0, volume))


def track_id(snap: StateSnapshot) -> str:
    ident = "\x1f".join([snap.entity_id, snap.title or "", snap.artist or "", snap.album or ""])
    return TRACKID_PREFIX + hashlib.sha1(ident.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class TrackMetadata:
    trackid: str
    length: int
    art_url: str
    album: str
    artist: str
    title: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mpris:trackid": self.trackid,
            "mpris:length": self.length,
            "mpris:artUrl": self.art_url,
            "xesam:album": self.album,
            "xesam:artist": [self.artist],
            "xesam:title": self.title,
        }


@dataclass(frozen=True)
class PlayerProperties:
    """
    The org.mpris.MediaPlayer2.Player property group for one update.
    metadata is None when the update must leave the published Metadata alone.
    """

    playback_status: PlaybackStatus
    loop_status: LoopStatus
    shuffle: bool
    volume: float
    position: int
    metadata: Optional[TrackMetadata] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "PlaybackStatus": self.playback_status.mpris_value,
            "LoopStatus": self.loop_status.value,
            "Shuffle": self.shuffle,
            "Volume": self.volume,
            "Position": self.position,
        }
        if self.metadata is not None:
            out["Metadata"] = self.metadata.to_dict()
        return out


Sink = Union[Callable[[PlayerProperties], Awaitable[None]], Callable[[PlayerProperties], None]]


class Projector:
    """
    Filters snapshots down to one music media_player, normalizes them and hands
    the result to the sink (the MPRIS bridge) and the event bus.

    Also remembers which entity produced the last update; reverse commands use
    it as their target.
    """

    def __init__(
        self,
        artwork: ArtworkCache,
        *,
        entity_filter: Optional[str] = None,
        sink: Optional[Sink] = None,
        bus: Optional[EventBus] = None,
    ) -> None:
        self._artwork = artwork
        self._entity_filter = entity_filter or None
        self.sink = sink
        self._bus = bus

        self._entity_lock = asyncio.Lock()
        self._entity_id: Optional[str] = None
        self.last: Optional[PlayerProperties] = None
        self.metadata: Optional[TrackMetadata] = None

    # ── Filtering / projection ──────────────────────────────────────────────

    def accepts(self, snap: StateSnapshot) -> bool:
        if not snap.is_media_player() or not snap.is_music():
            return False
        return self._entity_filter is None or snap.entity_id == self._entity_filter

    async def project(self, snap: StateSnapshot) -> Optional[PlayerProperties]:
        """Pure mapping (plus artwork resolution). None if the snapshot is filtered out."""
        if not self.accepts(snap):
            return None

        metadata: Optional[TrackMetadata] = None
        if snap.title and snap.artist:
            metadata = TrackMetadata(
                trackid=track_id(snap),
                length=to_microseconds(snap.duration),
                art_url=await self._artwork.resolve(snap.entity_picture),
                album=snap.album or "",
                artist=snap.artist,
                title=snap.title,
            )

        return PlayerProperties(
            playback_status=parse_playback_status(snap.state),
            loop_status=parse_loop_status(snap.repeat),
            shuffle=bool(snap.shuffle),
            volume=_clamp_volume(snap.volume),
            position=to_microseconds(snap.position),
            metadata=metadata,
        )

    # ── Updates ─────────────────────────────────────────────────────────────

    async def update(self, snap: StateSnapshot) -> Optional[PlayerProperties]:
        props = await self.project(snap)
        if props is None:
            return None

        async with self._entity_lock:
            if self._entity_id != snap.entity_id:
                log.info("following %s", snap.entity_id)
            self._entity_id = snap.entity_id

        self.last = props
        if props.metadata is not None:
            self.metadata = props.metadata
        log.debug("update MPRIS properties: %s", props.to_dict())

        if self.sink is not None:
            res = self.sink(props)
            if asyncio.iscoroutine(res):
                await res
        if self._bus is not None:
            await self._bus.publish({"type": "properties", "data": self.snapshot()})
        return props

    async def apply_event(self, env: Envelope) -> Optional[PlayerProperties]:
        snap = env.new_state()
        if snap is None:
            return None
        return await self.update(snap)

    async def seed(self, states: Iterable[StateSnapshot]) -> List[PlayerProperties]:
        """Apply the startup bulk fetch; returns the updates that were emitted."""
        out: List[PlayerProperties] = []
        for snap in states:
            props = await self.update(snap)
            if props is not None:
                log.debug("seeded from %s (%s)", snap.entity_id, snap.state)
                out.append(props)
        return out

    # ── Shared state ────────────────────────────────────────────────────────

    async def target_entity(self) -> Optional[str]:
        async with self._entity_lock:
            return self._entity_id

    @property
    def entity_id(self) -> Optional[str]:
        return self._entity_id

    def snapshot(self) -> Dict[str, Any]:
        """Last known state for the status API."""
        props = self.last.to_dict() if self.last is not None else {}
        if self.metadata is not None:
            props["Metadata"] = self.metadata.to_dict()
        return {"entity_id": self._entity_id, "properties": props}
