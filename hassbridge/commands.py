"""Translate MPRIS player verbs into Home Assistant media_player service calls."""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from .messages import DOMAIN_MEDIA_PLAYER, TYPE_CALL_SERVICE, Envelope

log = logging.getLogger(__name__)

SendCommand = Callable[..., Awaitable[Tuple[int, Envelope]]]
EntityLookup = Callable[[], Awaitable[Optional[str]]]

# MPRIS method → media_player service
SERVICES: Dict[str, str] = {
    "Play": "media_play",
    "Pause": "media_pause",
    "PlayPause": "media_play_pause",
    "Stop": "media_stop",
    "Next": "media_next_track",
    "Previous": "media_previous_track",
    "Volume": "volume_set",
    "Shuffle": "shuffle_set",
    "LoopStatus": "repeat_set",
}

# MPRIS LoopStatus → media_player repeat mode
REPEAT_MODES: Dict[str, str] = {
    "None": "off",
    "Track": "one",
    "Playlist": "all",
}


class ServiceCaller:
    """
    Stateless apart from the target entity, which comes from the projector.
    Errors from the hub (CommandFailed etc.) propagate to the caller.
    """

    def __init__(self, send_command: SendCommand, target_entity: EntityLookup) -> None:
        self._send_command = send_command
        self._target_entity = target_entity

    async def call(self, verb: str, service_data: Optional[Dict[str, Any]] = None) -> bool:
        """Run verb against the current entity. Returns False when there is nothing to target."""
        service = SERVICES.get(verb)
        if service is None:
            raise ValueError(f"unsupported player verb: {verb}")

        entity_id = await self._target_entity()
        if not entity_id:
            log.warning("%s ignored: no media_player seen yet", verb)
            return False

        await self._send_command(
            TYPE_CALL_SERVICE,
            domain=DOMAIN_MEDIA_PLAYER,
            service=service,
            target={"entity_id": entity_id},
            service_data=service_data,
            return_response=False,
        )
        log.debug("%s → %s.%s on %s", verb, DOMAIN_MEDIA_PLAYER, service, entity_id)
        return True

    async def play(self) -> bool:
        return await self.call("Play")

    async def pause(self) -> bool:
        return await self.call("Pause")

    async def play_pause(self) -> bool:
        return await self.call("PlayPause")

    async def stop(self) -> bool:
        return await self.call("Stop")

    async def next(self) -> bool:
        return await self.call("Next")

    async def previous(self) -> bool:
        return await self.call("Previous")

    async def set_volume(self, level: float) -> bool:
        return await self.call("Volume", {"volume_level": min(1.0, max(0.0, float(level)))})

    async def set_shuffle(self, shuffle: bool) -> bool:
        return await self.call("Shuffle", {"shuffle": bool(shuffle)})

    async def set_loop_status(self, loop_status: str) -> bool:
        repeat = REPEAT_MODES.get(loop_status)
        if repeat is None:
            raise ValueError(f"invalid LoopStatus: {loop_status}")
        return await self.call("LoopStatus", {"repeat": repeat})
