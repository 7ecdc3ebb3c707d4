"""Application entry point wiring Home Assistant, the projector and MPRIS."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal
from typing import List, Optional

import uvicorn
import uvloop

from .artwork import ArtworkCache
from .commands import ServiceCaller
from .config import Config
from .errors import ConfigError, HassBridgeError, StatesFetchError
from .eventbus import EventBus
from .ha_ws import HASession, Subscription
from .http_api import make_app
from .messages import EVENT_STATE_CHANGED
from .mpris import MPRISBridge
from .projection import Projector
from .states import fetch_states

log = logging.getLogger(__name__)


async def _pump(sub: Subscription, projector: Projector) -> None:
    """Feed state_changed events to the projector, in arrival order."""
    async for env in sub:
        await projector.apply_event(env)


async def _seed(cfg: Config, token: str, projector: Projector) -> None:
    try:
        states = await fetch_states(cfg.hass_base_url, token, timeout=cfg.http_timeout)
    except StatesFetchError as exc:
        # events will fill the player in on the next change
        log.error("initial state fetch failed: %s", exc)
        return
    seeded = await projector.seed(states)
    log.info("seeded %d media_player update(s) from %d entities", len(seeded), len(states))


async def run(cfg: Config, token: str) -> int:
    """Run the bridge until a signal or a fatal error. Returns the exit code."""
    session = HASession(
        url=cfg.hass_uri,
        token=token,
        heartbeat_interval=cfg.heartbeat_interval,
        pong_timeout=cfg.pong_timeout,
        queue_size=cfg.event_queue,
    )
    artwork = ArtworkCache(base_url=cfg.hass_base_url, token=token, timeout=cfg.http_timeout)
    bus = EventBus()
    projector = Projector(artwork, entity_filter=cfg.entity_id, bus=bus)
    caller = ServiceCaller(session.send_command, projector.target_entity)
    bridge = MPRISBridge(caller)
    projector.sink = bridge.update

    server: Optional[uvicorn.Server] = None
    tasks: List[asyncio.Task] = []
    stop = asyncio.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError, RuntimeError):
            asyncio.get_running_loop().add_signal_handler(sig, stop.set)

    try:
        await session.connect()
        sub = await session.subscribe_events(EVENT_STATE_CHANGED)
        await bridge.start()
        await _seed(cfg, token, projector)

        if cfg.status_port:
            app = make_app(bus, session, projector, caller)
            config = uvicorn.Config(
                app=app, host=cfg.status_host, port=cfg.status_port, log_level="info", loop="asyncio"
            )
            server = uvicorn.Server(config)
            tasks.append(asyncio.create_task(server.serve(), name="status_api"))
            log.info("status API on http://%s:%d", cfg.status_host, cfg.status_port)

        pump = asyncio.create_task(_pump(sub, projector), name="ha_events")
        closed = asyncio.create_task(session.wait_closed(), name="ha_closed")
        dbus_gone = asyncio.create_task(bridge.wait_disconnected(), name="dbus_closed")
        stopping = asyncio.create_task(stop.wait(), name="signal")
        tasks += [pump, closed, dbus_gone, stopping]

        await asyncio.wait([pump, closed, dbus_gone, stopping], return_when=asyncio.FIRST_COMPLETED)

        if stopping.done():
            log.info("gracefully shutting down now")
            return 0
        if session.failure is not None:
            log.error("unexpected error occurred: %s", session.failure)
        elif dbus_gone.done():
            log.error("lost the D-Bus session bus")
        elif pump.done() and not pump.cancelled() and pump.exception() is not None:
            log.error("event pump crashed: %r", pump.exception())
        else:
            log.error("home assistant event stream ended")
        return 1

    except HassBridgeError as exc:
        log.error("startup failed: %s", exc)
        return 1

    finally:
        if server is not None:
            server.should_exit = True
        for t in tasks:
            if t.get_name() != "status_api":
                t.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await asyncio.gather(*tasks, return_exceptions=True)
        await bridge.stop()
        await session.close()
        await artwork.close()


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="hassbridge", description="Bridge a Home Assistant media_player to MPRIS.")
    parser.add_argument("-v", "--verbose", action="store_true", help="verbose (debug) logging")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> None:
    args = _parse_args(argv)
    try:
        cfg = Config.load()
        token = cfg.load_token()
    except ConfigError as exc:
        logging.basicConfig(level="INFO")
        log.error("cannot start: %s", exc)
        raise SystemExit(2) from exc

    logging.basicConfig(
        level="DEBUG" if args.verbose else cfg.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    log.info("hub %s", cfg.hass_uri)
    raise SystemExit(uvloop.run(run(cfg, token)))


if __name__ == "__main__":
    main()
