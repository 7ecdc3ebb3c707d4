"""Home Assistant websocket session: handshake, heartbeat and request multiplexing."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from typing import Any, Dict, List, Optional, Tuple

import aiohttp

from .errors import (
    AuthError,
    CommandFailed,
    HassBridgeError,
    ProtocolError,
    TransportError,
    UnexpectedMessageKind,
)
from .messages import (
    ERR_ID_REUSE,
    TYPE_AUTH,
    TYPE_AUTH_INVALID,
    TYPE_AUTH_OK,
    TYPE_AUTH_REQUIRED,
    TYPE_ID_REUSE,
    TYPE_PING,
    TYPE_PONG,
    TYPE_RESULT,
    TYPE_SUBSCRIBE_EVENTS,
    TYPE_UNSUBSCRIBE_EVENTS,
    Envelope,
    command,
)

log = logging.getLogger(__name__)

HEARTBEAT_INTERVAL = 45.0
HANDSHAKE_TIMEOUT = 10.0
EVENT_QUEUE_SIZE = 256

_CLOSED_FRAMES = (
    aiohttp.WSMsgType.CLOSE,
    aiohttp.WSMsgType.CLOSING,
    aiohttp.WSMsgType.CLOSED,
    aiohttp.WSMsgType.ERROR,
)

# Queue marker that ends a subscription stream.
_END = object()


class Subscription:
    """
    Standing registration for one ``subscribe_events`` id.

    Iterate it with ``async for``; the stream is unbounded and can only be
    consumed once. Events are kept in arrival order. When the queue is full
    the oldest event is dropped so the receive loop never waits on a slow
    consumer.
    """

    def __init__(self, session: "HASession", sub_id: int, *, maxsize: int = EVENT_QUEUE_SIZE) -> None:
        self._session = session
        self.id = sub_id
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=max(1, maxsize))
        self._ended = False
        self._error: Optional[BaseException] = None
        self.dropped = 0

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> Envelope:
        item = await self._queue.get()
        if item is _END:
            # keep the marker so later reads end as well
            self._force_put(_END)
            if self._error is not None:
                raise self._error
            raise StopAsyncIteration
        return item

    @property
    def active(self) -> bool:
        return not self._ended

    async def cancel(self) -> None:
        """Unsubscribe on the hub and end the stream."""
        await self._session.unsubscribe(self)

    # ── Called by the session ───────────────────────────────────────────────

    def _deliver(self, env: Envelope) -> None:
        if self._ended:
            return
        if self._force_put(env):
            self.dropped += 1
            log.warning("subscription %d is falling behind; dropped oldest event (%d so far)", self.id, self.dropped)

    def _end(self, error: Optional[BaseException] = None) -> None:
        if self._ended:
            return
        self._ended = True
        self._error = error
        self._force_put(_END)

    def _force_put(self, item: Any) -> bool:
        """Enqueue without waiting. Returns True if an older item had to be dropped."""
        try:
            self._queue.put_nowait(item)
            return False
        except asyncio.QueueFull:
            with contextlib.suppress(asyncio.QueueEmpty):
                self._queue.get_nowait()
            self._queue.put_nowait(item)
            return True


class HASession:
    """
    One authenticated websocket to Home Assistant.

    connect() performs the auth handshake and starts the receive and heartbeat
    loops. Any number of tasks may then call send_command()/subscribe_events()
    concurrently; responses are routed back by message id. A transport or
    protocol failure ends the session once: blocked callers are released with
    the error and wait_closed() returns it. There is no reconnect.
    """

    def __init__(
        self,
        *,
        url: str,
        token: str,
        heartbeat_interval: float = HEARTBEAT_INTERVAL,
        pong_timeout: float = 0.0,
        queue_size: int = EVENT_QUEUE_SIZE,
        handshake_timeout: float = HANDSHAKE_TIMEOUT,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self._url = url
        self._token = token or ""
        self._heartbeat_interval = heartbeat_interval
        self._pong_timeout = pong_timeout
        self._queue_size = queue_size
        self._handshake_timeout = handshake_timeout

        self._session = session
        self._owns_session = session is None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None

        self._msg_id = 0
        self._lock = asyncio.Lock()        # correlation table
        self._write_lock = asyncio.Lock()  # one frame on the wire at a time
        self._pending: Dict[int, asyncio.Future[Envelope]] = {}
        self._subs: Dict[int, Subscription] = {}

        self._tasks: List[asyncio.Task] = []
        self._closing = False
        self._closed = asyncio.Event()
        self._failure: Optional[HassBridgeError] = None
        self._pong = asyncio.Event()  # set by each pong
        self.ha_version: Optional[str] = None

    # ── Public API ───────────────────────────────────────────────────────────

    @property
    def is_open(self) -> bool:
        return self._ws is not None and not self._closing

    @property
    def failure(self) -> Optional[HassBridgeError]:
        return self._failure

    async def connect(self) -> None:
        """Open the socket and authenticate. Raises TransportError, AuthError or ProtocolError."""
        if self._ws is not None or self._closing:
            raise HassBridgeError("session already used")

        session = await self._ensure_session()
        try:
            ws = await session.ws_connect(self._url, autoping=True)
        except (aiohttp.ClientError, OSError, asyncio.TimeoutError) as exc:
            await self._close_session()
            raise TransportError(f"connect to {self._url} failed: {exc}") from exc

        try:
            self.ha_version = await asyncio.wait_for(self._auth(ws), timeout=self._handshake_timeout)
        except asyncio.TimeoutError as exc:
            await self._abort_handshake(ws)
            raise TransportError("timed out waiting for authentication") from exc
        except BaseException:
            await self._abort_handshake(ws)
            raise

        self._ws = ws
        log.info("home assistant connected (version %s)", self.ha_version or "?")

        self._tasks = [
            asyncio.create_task(self._recv_loop(ws), name="ha_recv"),
            asyncio.create_task(self._heartbeat_loop(), name="ha_heartbeat"),
        ]

    async def send_command(self, mtype: str, **fields: Any) -> Tuple[int, Envelope]:
        """
        Send one command and wait for its ``result``.
        Returns (id, envelope). Raises UnexpectedMessageKind, CommandFailed or TransportError.
        """
        return await self._exchange(mtype, fields)

    async def subscribe_events(self, event_type: Optional[str] = None) -> Subscription:
        """Subscribe to the event bus (all events when event_type is None)."""
        msg_id = self._next_id()
        sub = Subscription(self, msg_id, maxsize=self._queue_size)
        try:
            await self._exchange(TYPE_SUBSCRIBE_EVENTS, {"event_type": event_type}, msg_id=msg_id, sub=sub)
        except CommandFailed as exc:
            log.error("subscribe to %s failed: %s", event_type or "all events", exc.message or exc.code)
            raise
        log.info("subscribed to home assistant event %s (id %d)", event_type or "*", msg_id)
        return sub

    async def unsubscribe(self, sub: Subscription) -> None:
        async with self._lock:
            registered = self._subs.pop(sub.id, None) is sub
        sub._end()
        if not registered or not self.is_open:
            return
        try:
            await self._exchange(TYPE_UNSUBSCRIBE_EVENTS, {"subscription": sub.id})
        except (CommandFailed, UnexpectedMessageKind) as exc:
            log.warning("unsubscribe %d failed: %s", sub.id, exc)

    async def wait_closed(self) -> Optional[HassBridgeError]:
        """Block until the session ends. Returns the fatal error, or None after close()."""
        await self._closed.wait()
        return self._failure

    async def close(self) -> None:
        """Orderly shutdown. Secondary errors are logged, never raised."""
        if self._closing:
            await self._closed.wait()
            return
        tasks = list(self._tasks)
        await self._teardown(TransportError("session closed"), fatal=False)
        for t in tasks:
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await t

    # ── Internals ───────────────────────────────────────────────────────────

    def _next_id(self) -> int:
        self._msg_id += 1
        return self._msg_id

    async def _exchange(
        self,
        mtype: str,
        fields: Dict[str, Any],
        *,
        msg_id: Optional[int] = None,
        sub: Optional[Subscription] = None,
    ) -> Tuple[int, Envelope]:
        if msg_id is None:
            msg_id = self._next_id()
        fut: asyncio.Future[Envelope] = asyncio.get_running_loop().create_future()

        async with self._lock:
            if self._closing:
                raise self._failure or TransportError("session closed")
            self._pending[msg_id] = fut
            if sub is not None:
                # registered before the write so no event can beat the result
                self._subs[msg_id] = sub

        ok = False
        try:
            await self._write(command(msg_id, mtype, **fields))
            env = await fut
            if env.type != TYPE_RESULT:
                raise UnexpectedMessageKind(env.type)
            if not env.success:
                raise CommandFailed(env.error_code, env.error_message)
            ok = True
            return msg_id, env
        finally:
            if fut.done() and not fut.cancelled():
                fut.exception()  # mark retrieved when the write itself failed
            async with self._lock:
                self._pending.pop(msg_id, None)
                if sub is not None and not ok:
                    self._subs.pop(msg_id, None)
            if sub is not None and not ok:
                sub._end()

    async def _write(self, payload: Dict[str, Any]) -> None:
        ws = self._ws
        if ws is None or self._closing:
            raise self._failure or TransportError("session closed")
        text = json.dumps(payload)
        try:
            async with self._write_lock:
                await ws.send_str(text)
        except (aiohttp.ClientError, OSError, RuntimeError) as exc:
            err = TransportError(f"websocket write failed: {exc}")
            await self._fail(err)
            raise err from exc
        log.debug("sent %s", text)

    async def _auth(self, ws: aiohttp.ClientWebSocketResponse) -> Optional[str]:
        first = await self._receive_handshake(ws)
        if first.type != TYPE_AUTH_REQUIRED:
            raise ProtocolError(f"unexpected first message: {first.type!r}")

        try:
            await ws.send_str(json.dumps({"type": TYPE_AUTH, "access_token": self._token}))
        except (aiohttp.ClientError, OSError, RuntimeError) as exc:
            raise TransportError(f"sending credentials failed: {exc}") from exc

        reply = await self._receive_handshake(ws)
        if reply.type == TYPE_AUTH_OK:
            return reply.raw.get("ha_version")
        if reply.type == TYPE_AUTH_INVALID:
            raise AuthError(f"authentication failed: {reply.raw.get('message', '')}")
        raise ProtocolError(f"unexpected authentication reply: {reply.type!r}")

    async def _receive_handshake(self, ws: aiohttp.ClientWebSocketResponse) -> Envelope:
        try:
            msg = await ws.receive()
        except (aiohttp.ClientError, OSError) as exc:
            raise TransportError(f"websocket read failed: {exc}") from exc
        if msg.type == aiohttp.WSMsgType.TEXT:
            return Envelope.decode(msg.data)
        if msg.type in _CLOSED_FRAMES:
            raise TransportError(f"websocket closed during handshake ({msg.type.name})")
        raise ProtocolError(f"unexpected {msg.type.name} frame during handshake")

    async def _abort_handshake(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        with contextlib.suppress(Exception):
            await ws.close(code=aiohttp.WSCloseCode.INTERNAL_ERROR, message=b"handshake failed")
        await self._close_session()

    async def _recv_loop(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        """The only reader of the socket."""
        try:
            while True:
                msg = await ws.receive()
                if msg.type == aiohttp.WSMsgType.TEXT:
                    log.debug("received %s", msg.data)
                    await self._dispatch(Envelope.decode(msg.data))
                elif msg.type in _CLOSED_FRAMES:
                    raise TransportError(f"websocket closed by peer ({msg.type.name}, code {ws.close_code})")
                else:
                    log.debug("ignoring %s frame", msg.type.name)
        except asyncio.CancelledError:
            raise
        except HassBridgeError as exc:
            await self._fail(exc)
        except Exception as exc:
            await self._fail(TransportError(f"websocket read failed: {exc!r}"))

    async def _dispatch(self, env: Envelope) -> None:
        if env.type == TYPE_PONG:
            self._pong.set()
            log.debug("pong received (id %s)", env.id)
            return
        if env.type == TYPE_ID_REUSE or env.error_code == ERR_ID_REUSE:
            raise ProtocolError("home assistant reported message id reuse; connection must be recreated")

        fut: Optional[asyncio.Future[Envelope]] = None
        sub: Optional[Subscription] = None
        if env.id is not None:
            async with self._lock:
                fut = self._pending.pop(env.id, None)
                if fut is None:
                    sub = self._subs.get(env.id)

        if fut is not None:
            if not fut.done():
                fut.set_result(env)
        elif sub is not None:
            sub._deliver(env)
        else:
            log.warning("message received but no subscriber: id=%s type=%s", env.id, env.type)

    async def _heartbeat_loop(self) -> None:
        loop = asyncio.get_running_loop()
        try:
            while True:
                ping_id = self._next_id()
                # cleared before the write so a fast pong can't be missed
                self._pong.clear()
                sent = loop.time()
                await self._write(command(ping_id, TYPE_PING))
                log.debug("ping sent (id %d)", ping_id)
                if self._pong_timeout > 0:
                    try:
                        await asyncio.wait_for(self._pong.wait(), timeout=self._pong_timeout)
                    except asyncio.TimeoutError:
                        raise TransportError(
                            f"no pong within {self._pong_timeout:g}s of ping {ping_id}; heartbeat timed out"
                        ) from None
                await asyncio.sleep(max(0.0, self._heartbeat_interval - (loop.time() - sent)))
        except asyncio.CancelledError:
            raise
        except HassBridgeError as exc:
            await self._fail(exc)

    async def _fail(self, exc: HassBridgeError) -> None:
        if self._closing:
            return
        log.error("home assistant session failed: %s", exc)
        await self._teardown(exc, fatal=True)

    async def _teardown(self, exc: HassBridgeError, *, fatal: bool) -> None:
        """Stop the loops and release every waiter. Runs once per session."""
        if self._closing:
            return
        self._closing = True
        if fatal:
            self._failure = exc

        current = asyncio.current_task()
        for t in self._tasks:
            if t is not current:
                t.cancel()

        async with self._lock:
            pending, self._pending = self._pending, {}
            subs, self._subs = self._subs, {}
        for fut in pending.values():
            if not fut.done():
                fut.set_exception(exc)
        for sub in subs.values():
            sub._end(exc if fatal else None)

        await self._close_ws(normal=not fatal)
        await self._close_session()
        self._closed.set()

    async def _close_ws(self, *, normal: bool) -> None:
        ws, self._ws = self._ws, None
        if ws is None:
            return
        code = aiohttp.WSCloseCode.OK if normal else aiohttp.WSCloseCode.INTERNAL_ERROR
        try:
            await ws.close(code=code, message=b"goodbye")
        except Exception as exc:
            log.error("home assistant websocket close failed: %s", exc)
        else:
            log.info("closed home assistant websocket connection")

    async def _close_session(self) -> None:
        sess = self._session
        if sess is None or not self._owns_session:
            return
        self._session = None
        with contextlib.suppress(Exception):
            await sess.close()

    async def _ensure_session(self) -> aiohttp.ClientSession:
        session = self._session
        if session is None or session.closed:
            self._session = session = aiohttp.ClientSession()
            self._owns_session = True
        return session
