import asyncio
import json

import pytest

from chess_client.channel import CHANNEL_ERROR, ChannelSocket, WebsocketsSocket, decode_frame, encode_frame, socket_url
from chess_client.exceptions import ChannelClosed, ChannelReplyError, ChannelTimeout


class PipeSocket(ChannelSocket):
    """Channel socket whose pipe is a list of sent frames."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.sent = []

    async def connect(self):
        pass

    async def send_text(self, text):
        self.sent.append(decode_frame(text))

    def reply(self, index=-1, status="ok", response=None):
        join_ref, ref, topic, _event, _payload = self.sent[index]
        self.handle_frame(encode_frame(join_ref, ref, topic, "phx_reply", {"status": status, "response": response}))


async def _started(coro):
    task = asyncio.ensure_future(coro)
    await asyncio.sleep(0)
    return task


def test_socket_url_carries_params_and_version():
    url = socket_url("ws://localhost:4000/socket/", {"current_game_code": "abc123"})
    assert url == "ws://localhost:4000/socket/websocket?current_game_code=abc123&vsn=2.0.0"


def test_malformed_frames_are_rejected():
    with pytest.raises(ValueError):
        decode_frame(json.dumps({"event": "x"}))


@pytest.mark.asyncio
async def test_join_sends_params_and_uses_its_ref_as_join_ref():
    sock = PipeSocket()
    chan = sock.channel("room:abc123", {"current_game_color": "white"})

    task = await _started(chan.join())
    join_ref, ref, topic, event, payload = sock.sent[0]
    assert (topic, event) == ("room:abc123", "phx_join")
    assert join_ref == ref
    assert payload == {"params": {"current_game_color": "white"}}

    sock.reply(response={"joined": True})
    assert await task == {"joined": True}
    assert chan.join_ref == ref


@pytest.mark.asyncio
async def test_replies_are_matched_by_ref():
    sock = PipeSocket()
    chan = sock.channel("room:abc123")

    first = await _started(chan.push("get_game_state"))
    second = await _started(chan.push("get_valid_moves", {"board_index": 12}))

    sock.reply(index=1, response=["m"])
    sock.reply(index=0, response="state")

    assert await first == "state"
    assert await second == ["m"]


@pytest.mark.asyncio
async def test_error_reply_raises_with_response():
    sock = PipeSocket()
    chan = sock.channel("room:abc123")

    task = await _started(chan.push("make_move", {"from": 12, "to": 36}))
    sock.reply(status="error", response={"reason": "illegal move"})

    with pytest.raises(ChannelReplyError) as excinfo:
        await task
    assert excinfo.value.reason == "illegal move"


@pytest.mark.asyncio
async def test_missing_reply_times_out():
    sock = PipeSocket(timeout=0.01)
    chan = sock.channel("room:abc123")

    with pytest.raises(ChannelTimeout):
        await chan.push("get_game_state")


@pytest.mark.asyncio
async def test_pushes_reach_handlers_of_their_topic_only():
    sock = PipeSocket()
    room = sock.channel("room:abc123")
    other = sock.channel("room:zzz")
    seen = []
    room.on("game_over", lambda payload: seen.append(("room", payload)))
    other.on("game_over", lambda payload: seen.append(("other", payload)))

    sock.handle_frame(encode_frame("1", None, "room:abc123", "game_over", {"reason": "Checkmate"}))

    assert seen == [("room", {"reason": "Checkmate"})]


@pytest.mark.asyncio
async def test_failing_handler_does_not_stop_dispatch():
    sock = PipeSocket()
    chan = sock.channel("room:abc123")
    seen = []

    def broken(payload):
        raise RuntimeError("boom")

    chan.on("draw_requested", broken)
    chan.on("draw_requested", seen.append)
    sock.handle_frame(encode_frame("1", None, "room:abc123", "draw_requested", {"role": "black"}))

    assert seen == [{"role": "black"}]


@pytest.mark.asyncio
async def test_close_fails_pending_requests_and_notifies_channels():
    sock = PipeSocket()
    chan = sock.channel("room:abc123")
    errors = []
    chan.on(CHANNEL_ERROR, errors.append)

    task = await _started(chan.push("get_game_state"))
    sock.handle_close("server went away")

    with pytest.raises(ChannelClosed):
        await task
    assert errors == [{"reason": "server went away"}]

    with pytest.raises(ChannelClosed):
        await chan.push("get_game_state")


@pytest.mark.asyncio
async def test_leave_forgets_the_topic():
    sock = PipeSocket()
    chan = sock.channel("room:abc123")
    seen = []
    chan.on("game_over", seen.append)

    task = await _started(chan.leave())
    assert sock.sent[-1][3] == "phx_leave"
    sock.reply()
    await task

    sock.handle_frame(encode_frame("1", None, "room:abc123", "game_over", {}))
    assert seen == []


@pytest.mark.asyncio
async def test_frames_after_close_are_not_dispatched():
    sock = PipeSocket()
    chan = sock.channel("room:abc123")
    seen = []
    chan.on("game_state_updated", seen.append)

    sock.handle_close("gone")
    sock.handle_frame(encode_frame("1", None, "room:abc123", "game_state_updated", {"game": "x"}))

    assert seen == []


@pytest.mark.asyncio
async def test_unanswered_heartbeat_closes_the_socket():
    sock = PipeSocket(timeout=0.01, heartbeat_interval=0.01)
    chan = sock.channel("room:abc123")
    errors = []
    chan.on(CHANNEL_ERROR, errors.append)

    await asyncio.wait_for(sock.heartbeat(), 1)

    assert sock.sent[0][2:4] == ("phoenix", "heartbeat")
    assert sock.closed
    assert errors == [{"reason": "closed by client"}]


@pytest.mark.asyncio
async def test_answered_heartbeat_keeps_the_socket_open():
    sock = PipeSocket(heartbeat_interval=0.01)
    task = asyncio.ensure_future(sock.heartbeat())
    for _ in range(50):
        await asyncio.sleep(0.01)
        if sock.sent:
            break
    sock.reply(index=0, response={})
    for _ in range(50):
        await asyncio.sleep(0.01)
        if len(sock.sent) > 1:
            break

    assert len(sock.sent) == 2
    assert not sock.closed
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task


class FakeConnection:
    def __init__(self):
        self.closed = False

    async def close(self):
        self.closed = True


@pytest.mark.asyncio
async def test_websockets_socket_close_closes_connection_and_notifies():
    sock = WebsocketsSocket("ws://localhost:4000/socket", {"current_game_code": "abc123"})
    conn = sock._ws = FakeConnection()
    chan = sock.channel("room:abc123")
    errors = []
    chan.on(CHANNEL_ERROR, errors.append)

    await sock.close()

    assert conn.closed
    assert sock.closed
    assert errors == [{"reason": "closed by client"}]
    assert sock.url == "ws://localhost:4000/socket/websocket?current_game_code=abc123&vsn=2.0.0"
