"""Optional local status API: health, last projected state, live updates."""

from __future__ import annotations

import json
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel

from .commands import ServiceCaller
from .errors import HassBridgeError
from .eventbus import EventBus
from .ha_ws import HASession
from .projection import Projector

log = logging.getLogger(__name__)

# verbs that take no service data
_MEDIA_VERBS = {"play": "Play", "pause": "Pause", "toggle": "PlayPause", "stop": "Stop",
                "next": "Next", "previous": "Previous"}


class MediaBody(BaseModel):
    command: str


def make_app(bus: EventBus, session: HASession, projector: Projector, caller: ServiceCaller) -> FastAPI:
    app = FastAPI(title="hassbridge")

    @app.get("/healthz")
    async def healthz():
        ok = session.is_open
        body = {"ok": ok, "ha_version": session.ha_version}
        if not ok and session.failure is not None:
            body["error"] = str(session.failure)
        return JSONResponse(body, status_code=200 if ok else 503)

    @app.get("/api/state")
    async def get_state():
        return projector.snapshot()

    @app.post("/api/media")
    async def post_media(body: MediaBody):
        verb = _MEDIA_VERBS.get(body.command.lower())
        if verb is None:
            return JSONResponse({"ok": False, "error": "invalid command"}, status_code=400)
        try:
            sent = await caller.call(verb)
        except HassBridgeError as exc:
            log.warning("media %s failed: %s", body.command, exc)
            return JSONResponse({"ok": False, "error": str(exc)}, status_code=502)
        return {"ok": sent, "entity_id": projector.entity_id}

    @app.get("/events")
    async def sse(req: Request):
        async def gen():
            yield f"event: properties\ndata: {json.dumps(projector.snapshot())}\n\n"
            async for ev in bus.subscribe():
                if await req.is_disconnected():
                    break
                yield f"event: {ev.get('type', 'properties')}\ndata: {json.dumps(ev.get('data'))}\n\n"
        return StreamingResponse(gen(), media_type="text/event-stream")

    return app
