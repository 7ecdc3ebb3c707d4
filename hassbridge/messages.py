"""Home Assistant websocket message shapes and media_player state snapshots."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from .errors import ProtocolError

# ── Message types ───────────────────────────────────────────────────────────

TYPE_AUTH_REQUIRED = "auth_required"
TYPE_AUTH = "auth"
TYPE_AUTH_OK = "auth_ok"
TYPE_AUTH_INVALID = "auth_invalid"
TYPE_RESULT = "result"
TYPE_EVENT = "event"
TYPE_PING = "ping"
TYPE_PONG = "pong"
TYPE_SUBSCRIBE_EVENTS = "subscribe_events"
TYPE_UNSUBSCRIBE_EVENTS = "unsubscribe_events"
TYPE_CALL_SERVICE = "call_service"
# The hub rejects a reused message id either as its own message type or as a
# failed result carrying this error code.
TYPE_ID_REUSE = "id_reuse"
ERR_ID_REUSE = "id_reuse"

EVENT_STATE_CHANGED = "state_changed"

DOMAIN_MEDIA_PLAYER = "media_player"
CONTENT_TYPE_MUSIC = "music"


@dataclass(frozen=True)
class Envelope:
    """One decoded server → client message."""

    id: Optional[int]
    type: Optional[str]
    success: bool = False
    result: Any = None
    error: Mapping[str, Any] = field(default_factory=dict)
    event: Mapping[str, Any] = field(default_factory=dict)
    raw: Mapping[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def decode(cls, text: str) -> "Envelope":
        """Parse a text frame. Anything that is not a JSON object is a protocol error."""
        try:
            data = json.loads(text)
        except ValueError as exc:
            raise ProtocolError(f"undecodable frame: {exc}") from exc
        if not isinstance(data, dict):
            raise ProtocolError(f"frame is not an object: {type(data).__name__}")
        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Envelope":
        raw_id = data.get("id")
        msg_id = raw_id if isinstance(raw_id, int) and not isinstance(raw_id, bool) else None
        mtype = data.get("type")
        error = data.get("error")
        event = data.get("event")
        return cls(
            id=msg_id,
            type=mtype if isinstance(mtype, str) else None,
            success=data.get("success") is True,
            result=data.get("result"),
            error=error if isinstance(error, dict) else {},
            event=event if isinstance(event, dict) else {},
            raw=data,
        )

    @property
    def error_code(self) -> str:
        return str(self.error.get("code") or "")

    @property
    def error_message(self) -> str:
        return str(self.error.get("message") or "")

    @property
    def event_type(self) -> Optional[str]:
        et = self.event.get("event_type")
        return et if isinstance(et, str) else None

    def new_state(self) -> Optional["StateSnapshot"]:
        """Snapshot carried by a ``state_changed`` event, if any."""
        if self.event_type != EVENT_STATE_CHANGED:
            return None
        data = self.event.get("data") or {}
        if not isinstance(data, dict):
            return None
        new = data.get("new_state")
        if not isinstance(new, dict):
            # entity removed
            return None
        if "entity_id" not in new and isinstance(data.get("entity_id"), str):
            new = {**new, "entity_id": data["entity_id"]}
        return StateSnapshot.from_state(new)


# ── Attribute coercion ──────────────────────────────────────────────────────

def _opt_str(v: Any) -> Optional[str]:
    return v if isinstance(v, str) else None


def _opt_bool(v: Any) -> Optional[bool]:
    return v if isinstance(v, bool) else None


def _opt_float(v: Any) -> Optional[float]:
    if isinstance(v, bool) or not isinstance(v, (int, float)):
        return None
    return float(v)


def _artist(v: Any) -> Optional[str]:
    # Some integrations report a list of artists.
    if isinstance(v, list):
        names = [a for a in v if isinstance(a, str) and a]
        return ", ".join(names) or None
    return _opt_str(v)


@dataclass(frozen=True)
class StateSnapshot:
    """
    One media_player entity at a point in time.
    Attributes are parsed once here; wrongly typed values count as absent.
    """

    entity_id: str
    state: str = ""
    shuffle: Optional[bool] = None
    repeat: Optional[str] = None
    duration: Optional[float] = None
    position: Optional[float] = None
    volume: Optional[float] = None
    title: Optional[str] = None
    artist: Optional[str] = None
    album: Optional[str] = None
    entity_picture: Optional[str] = None
    media_content_type: Optional[str] = None

    @classmethod
    def from_state(cls, state: Mapping[str, Any]) -> "StateSnapshot":
        attrs = state.get("attributes")
        if not isinstance(attrs, dict):
            attrs = {}
        return cls(
            entity_id=str(state.get("entity_id") or ""),
            state=str(state.get("state") or ""),
            shuffle=_opt_bool(attrs.get("shuffle")),
            repeat=_opt_str(attrs.get("repeat")),
            duration=_opt_float(attrs.get("media_duration")),
            position=_opt_float(attrs.get("media_position")),
            volume=_opt_float(attrs.get("volume_level")),
            title=_opt_str(attrs.get("media_title")),
            artist=_artist(attrs.get("media_artist")),
            album=_opt_str(attrs.get("media_album_name")),
            entity_picture=_opt_str(attrs.get("entity_picture")),
            media_content_type=_opt_str(attrs.get("media_content_type")),
        )

    @property
    def domain(self) -> str:
        return self.entity_id.split(".", 1)[0] if "." in self.entity_id else ""

    def is_media_player(self) -> bool:
        return self.domain == DOMAIN_MEDIA_PLAYER

    def is_music(self) -> bool:
        return self.media_content_type == CONTENT_TYPE_MUSIC


def command(msg_id: int, mtype: str, **fields: Any) -> Dict[str, Any]:
    """Build a client → server command; ``None`` fields are omitted."""
    out: Dict[str, Any] = {"id": msg_id, "type": mtype}
    out.update({k: v for k, v in fields.items() if v is not None})
    return out
