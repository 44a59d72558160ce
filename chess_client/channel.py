"""
Phoenix-style channel transport.

One socket multiplexes topics ("room:abc123"). Frames use the v2 JSON
serializer: `[join_ref, ref, topic, event, payload]`. A request carries a
fresh `ref` and is answered by a `phx_reply` frame with the same ref and a
`{"status": ..., "response": ...}` payload; everything else on a topic is a
push and goes to the handlers registered with `PhoenixChannel.on`.

`ChannelSocket` holds the framing and bookkeeping. Subclasses only provide
the actual text pipe: `WebsocketsSocket` here for CPython, and a
`js.WebSocket` one in the browser entry point.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections import defaultdict
from typing import Any, Callable, Optional, Protocol
from urllib.parse import urlencode

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from chess_client.exceptions import ChannelClosed, ChannelError, ChannelReplyError, ChannelTimeout

logger = logging.getLogger(__name__)

PROTOCOL_VSN = "2.0.0"
PHOENIX_TOPIC = "phoenix"

# Events the transport itself emits to channel handlers
CHANNEL_ERROR = "phx_error"
CHANNEL_CLOSE = "phx_close"

PushHandler = Callable[[Any], None]


# ---- Interfaces the session consumes ----
class Channel(Protocol):
    topic: str

    async def join(self) -> Any: ...

    async def push(self, event: str, payload: Optional[dict] = None) -> Any: ...

    def on(self, event: str, handler: PushHandler) -> None: ...

    async def leave(self) -> None: ...


class Transport(Protocol):
    async def connect(self) -> None: ...

    def channel(self, topic: str, params: Optional[dict] = None) -> Channel: ...

    async def close(self) -> None: ...


# ---- Framing ----
def encode_frame(join_ref: Optional[str], ref: Optional[str], topic: str, event: str, payload: Any) -> str:
    return json.dumps([join_ref, ref, topic, event, payload])


def decode_frame(text: str) -> tuple[Optional[str], Optional[str], str, str, Any]:
    frame = json.loads(text)
    if not isinstance(frame, list) or len(frame) != 5:
        raise ValueError(f"malformed frame: {text!r}")
    join_ref, ref, topic, event, payload = frame
    return join_ref, ref, topic, event, payload


def socket_url(endpoint: str, params: Optional[dict] = None) -> str:
    query = dict(params or {})
    query["vsn"] = PROTOCOL_VSN
    return f"{endpoint.rstrip('/')}/websocket?{urlencode(query)}"


# ---- Socket core ----
class ChannelSocket:
    def __init__(self, *, timeout: float = 10.0, heartbeat_interval: float = 30.0) -> None:
        self.timeout = timeout
        self.heartbeat_interval = heartbeat_interval
        self.closed = False
        self._ref = 0
        self._pending: dict[str, asyncio.Future] = {}
        self._channels: dict[str, PhoenixChannel] = {}

    # Subclasses provide the pipe
    async def connect(self) -> None:
        raise NotImplementedError

    async def send_text(self, text: str) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        self.handle_close("closed by client")

    def make_ref(self) -> str:
        self._ref += 1
        return str(self._ref)

    def channel(self, topic: str, params: Optional[dict] = None) -> PhoenixChannel:
        chan = PhoenixChannel(self, topic, params or {})
        self._channels[topic] = chan
        return chan

    def forget(self, topic: str) -> None:
        self._channels.pop(topic, None)

    async def request(
        self,
        topic: str,
        event: str,
        payload: Any,
        *,
        ref: Optional[str] = None,
        join_ref: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        """Send one frame and wait for its `phx_reply`. Returns the reply's `response`."""
        if self.closed:
            raise ChannelClosed(f"cannot send {event!r}: socket is closed")

        ref = ref or self.make_ref()
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[ref] = future
        timeout = self.timeout if timeout is None else timeout

        try:
            await self.send_text(encode_frame(join_ref, ref, topic, event, payload))
            reply = await asyncio.wait_for(future, timeout)
        except asyncio.TimeoutError:
            raise ChannelTimeout(event, timeout) from None
        finally:
            self._pending.pop(ref, None)

        if not isinstance(reply, dict):
            raise ChannelReplyError(event, reply)
        if reply.get("status") != "ok":
            raise ChannelReplyError(event, reply.get("response"))
        return reply.get("response")

    def handle_frame(self, text: str) -> None:
        if self.closed:
            logger.debug("Dropping frame received after close")
            return
        try:
            _join_ref, ref, topic, event, payload = decode_frame(text)
        except ValueError as exc:
            logger.warning("Dropping undecodable frame: %s", exc)
            return

        if event == "phx_reply":
            future = self._pending.get(ref) if ref is not None else None
            if future is None or future.done():
                logger.debug("Reply for unknown ref %s on %s", ref, topic)
                return
            future.set_result(payload)
            return

        chan = self._channels.get(topic)
        if chan is None:
            logger.debug("Push %r for unjoined topic %s", event, topic)
            return
        chan.dispatch(event, payload)

    def handle_close(self, reason: str) -> None:
        if self.closed:
            return
        self.closed = True
        logger.info("Socket closed: %s", reason)

        for future in self._pending.values():
            if not future.done():
                future.set_exception(ChannelClosed(reason))
        self._pending.clear()

        for chan in list(self._channels.values()):
            chan.dispatch(CHANNEL_ERROR, {"reason": reason})

    async def heartbeat(self) -> None:
        """Keep the server-side socket alive; a missed heartbeat reply closes the socket."""
        while not self.closed:
            await asyncio.sleep(self.heartbeat_interval)
            if self.closed:
                return
            try:
                await self.request(PHOENIX_TOPIC, "heartbeat", {})
            except ChannelClosed:
                return
            except ChannelError as exc:
                logger.error("Heartbeat failed: %s", exc)
                await self.close()
                return


class PhoenixChannel:
    def __init__(self, socket: ChannelSocket, topic: str, params: dict) -> None:
        self.socket = socket
        self.topic = topic
        self.params = params
        self.join_ref: Optional[str] = None
        self._handlers: dict[str, list[PushHandler]] = defaultdict(list)

    async def join(self) -> Any:
        self.join_ref = self.socket.make_ref()
        return await self.socket.request(
            self.topic,
            "phx_join",
            {"params": self.params},
            ref=self.join_ref,
            join_ref=self.join_ref,
        )

    async def push(self, event: str, payload: Optional[dict] = None) -> Any:
        return await self.socket.request(self.topic, event, payload or {}, join_ref=self.join_ref)

    def on(self, event: str, handler: PushHandler) -> None:
        self._handlers[event].append(handler)

    def dispatch(self, event: str, payload: Any) -> None:
        handlers = list(self._handlers.get(event, ()))
        if not handlers:
            logger.debug("No handler for %r on %s", event, self.topic)
        for handler in handlers:
            try:
                handler(payload)
            except Exception:
                # A broken handler must not take the reader down with it
                logger.exception("Handler for %r on %s failed", event, self.topic)

    async def leave(self) -> None:
        try:
            if not self.socket.closed:
                await self.push("phx_leave")
        except ChannelError as exc:
            logger.debug("Leaving %s: %s", self.topic, exc)
        finally:
            self._handlers.clear()
            self.socket.forget(self.topic)


class WebsocketsSocket(ChannelSocket):
    """Channel socket over the `websockets` client."""

    def __init__(self, endpoint: str, params: Optional[dict] = None, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.url = socket_url(endpoint, params)
        self._ws: Any = None
        self._tasks: list[asyncio.Task] = []

    async def connect(self) -> None:
        try:
            self._ws = await websockets.connect(self.url)
        except (OSError, WebSocketException) as exc:
            raise ChannelClosed(f"could not connect to {self.url}: {exc}") from exc

        self._tasks = [
            asyncio.create_task(self._read_loop()),
            asyncio.create_task(self.heartbeat()),
        ]

    async def send_text(self, text: str) -> None:
        if self._ws is None:
            raise ChannelClosed("socket is not connected")
        try:
            await self._ws.send(text)
        except ConnectionClosed as exc:
            self.handle_close(str(exc))
            raise ChannelClosed(str(exc)) from exc

    async def _read_loop(self) -> None:
        reason = "connection closed"
        try:
            async for message in self._ws:
                self.handle_frame(message)
        except ConnectionClosed as exc:
            reason = str(exc)
        self.handle_close(reason)

    async def close(self) -> None:
        current = asyncio.current_task()
        for task in self._tasks:
            if task is not current:
                task.cancel()
        self._tasks = []
        if self._ws is not None:
            await self._ws.close()
        self.handle_close("closed by client")
