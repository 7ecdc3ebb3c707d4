"""Publish the player on the D-Bus session bus under an MPRIS name."""

from __future__ import annotations

import contextlib
import logging
import os
from typing import Optional

from dbus_fast import BusType, NameFlag, RequestNameReply
from dbus_fast.aio import MessageBus

from ..commands import ServiceCaller
from ..errors import HassBridgeError
from ..projection import PlayerProperties
from .player import OBJECT_PATH, ROOT_IFACE, MediaPlayer2Interface, PlayerInterface

log = logging.getLogger(__name__)


def default_bus_name() -> str:
    return f"{ROOT_IFACE}.hassbridge.instance{os.getpid()}"


class MPRISBridge:
    """
    Thin front: exports the two MPRIS interfaces, pushes projected properties
    into them and lets the player interface forward control calls.
    """

    def __init__(self, caller: ServiceCaller, *, bus_name: Optional[str] = None) -> None:
        self.bus_name = bus_name or default_bus_name()
        self.root = MediaPlayer2Interface()
        self.player = PlayerInterface(caller)
        self._bus: Optional[MessageBus] = None

    async def start(self) -> None:
        if self._bus is not None:
            return
        bus = await MessageBus(bus_type=BusType.SESSION).connect()
        try:
            bus.export(OBJECT_PATH, self.root)
            bus.export(OBJECT_PATH, self.player)
            reply = await bus.request_name(self.bus_name, NameFlag.DO_NOT_QUEUE)
            if reply != RequestNameReply.PRIMARY_OWNER:
                raise HassBridgeError(f"D-Bus name {self.bus_name} already taken ({reply.name})")
        except BaseException:
            bus.disconnect()
            raise
        self._bus = bus
        log.info("exported D-Bus %s as %s", OBJECT_PATH, self.bus_name)

    def update(self, props: PlayerProperties) -> None:
        changed = self.player.apply(props)
        if changed:
            log.debug("properties changed: %s", ", ".join(sorted(changed)))

    async def wait_disconnected(self) -> None:
        if self._bus is not None:
            await self._bus.wait_for_disconnect()

    async def stop(self) -> None:
        bus, self._bus = self._bus, None
        if bus is None:
            return
        with contextlib.suppress(Exception):
            bus.unexport(OBJECT_PATH)
        try:
            bus.disconnect()
        except Exception as exc:
            log.error("D-Bus connection close failed: %s", exc)
