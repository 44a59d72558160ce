"""
Development room server.

Speaks the same channel protocol as the production server (Phoenix v2
frames over one websocket, topics `room:<game_code>`) so the browser client
and `start_session` can be run against something local.
"""

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.responses import HTMLResponse, FileResponse
from fastapi.middleware.cors import CORSMiddleware
import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from chess_client.channel import PHOENIX_TOPIC, decode_frame, encode_frame
from chess_client.config import GAME_COLOR_COOKIE, GAME_ROLE_COOKIE
from chess_client.exceptions import DeserializationError
from chess_client.models import Color, Role, decode_move
from chess_client.server_game import ChessGame

logger = logging.getLogger(__name__)

app = FastAPI()
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---- Paths ----
BASE_DIR = Path(__file__).resolve().parent
TEMPLATE_PATH = BASE_DIR / "templates" / "index.html"
PYSCRIPT_TOML_PATH = BASE_DIR / "pyscript.toml"

# Modules the browser loads through pyscript.toml
CLIENT_MODULES = {
    "channel",
    "client",
    "config",
    "dialogs",
    "exceptions",
    "game_state",
    "interaction",
    "models",
    "move_query",
    "session",
    "view",
}


# ---- Room storage ----
@dataclass
class Member:
    websocket: WebSocket
    join_ref: Optional[str]
    color: Optional[Color]
    role: Role

    @property
    def can_play(self) -> bool:
        return self.role is Role.PLAYER and self.color is not None


@dataclass
class Room:
    topic: str
    game: ChessGame = field(default_factory=ChessGame)
    members: Dict[WebSocket, Member] = field(default_factory=dict)


rooms: Dict[str, Room] = {}

Reply = Tuple[str, Any]


def get_room(topic: str) -> Room:
    room = rooms.get(topic)
    if room is None:
        room = Room(topic=topic)
        rooms[topic] = room
    return room


def error(reason: str) -> Reply:
    return "error", {"reason": reason}


async def send_frame(websocket: WebSocket, join_ref, ref, topic: str, event: str, payload: Any) -> None:
    await websocket.send_text(encode_frame(join_ref, ref, topic, event, payload))


async def broadcast(room: Room, event: str, payload: Any) -> None:
    members = list(room.members.values())
    if not members:
        return
    await asyncio.gather(
        *[send_frame(m.websocket, m.join_ref, None, room.topic, event, payload) for m in members],
        return_exceptions=True,
    )


async def broadcast_state(room: Room) -> None:
    await broadcast(room, "game_state_updated", {"game": room.game.state().to_json()})
    if room.game.result is not None:
        await broadcast(room, "game_over", room.game.result.model_dump(mode="json"))


def parse_member(websocket: WebSocket, join_ref: Optional[str], payload: Any) -> Member:
    params = dict(websocket.query_params)
    if isinstance(payload, dict):
        params.update(payload.get("params") or {})

    try:
        color: Optional[Color] = Color(params.get(GAME_COLOR_COOKIE, ""))
    except ValueError:
        color = None
    try:
        role = Role(params.get(GAME_ROLE_COOKIE, Role.PLAYER.value))
    except ValueError:
        role = Role.SPECTATOR
    return Member(websocket=websocket, join_ref=join_ref, color=color, role=role)


# ---- Event handlers ----
async def handle_event(room: Room, member: Member, event: str, payload: Dict[str, Any]) -> Reply:
    game = room.game

    if event == "get_game_state":
        return "ok", game.state().to_json()

    if event == "get_valid_moves":
        index = payload.get("board_index")
        if not isinstance(index, int) or not 0 <= index < 64:
            return error("invalid board_index")
        return "ok", [move.to_json() for move in game.valid_moves(index)]

    if not member.can_play:
        return error("spectators cannot act")

    if event == "make_move":
        try:
            move = decode_move(payload)
        except DeserializationError as exc:
            return error(str(exc))
        if member.color != game.turn:
            return error("not your turn")
        if not game.make_move(move.from_, move.to, move.promote_to):
            return error("illegal move")
        await broadcast_state(room)
        return "ok", {}

    if event == "request_draw":
        if not game.offer_draw(member.color):
            return error("cannot offer a draw now")
        await broadcast(room, "draw_requested", {"role": member.color.value})
        return "ok", {}

    if event in ("accept_draw", "deny_draw"):
        accept = event == "accept_draw"
        if not game.answer_draw(member.color, accept):
            return error("no draw offer to answer")
        if accept:
            await broadcast(room, "game_over", game.result.model_dump(mode="json"))
        else:
            await broadcast(room, "draw_denied", {"role": member.color.value})
        return "ok", {}

    if event == "resign":
        if not game.resign(member.color):
            return error("game is already over")
        await broadcast(room, "game_over", game.result.model_dump(mode="json"))
        return "ok", {}

    return error(f"unknown event {event!r}")


# ---- Serve frontend files ----
@app.get("/")
async def index() -> HTMLResponse:
    html = TEMPLATE_PATH.read_text(encoding="utf-8")
    return HTMLResponse(html)


@app.get("/pyscript.toml")
async def serve_pyscript_toml() -> FileResponse:
    return FileResponse(PYSCRIPT_TOML_PATH)


@app.get("/chess_client/{module}.py")
async def serve_client_module(module: str) -> FileResponse:
    if module not in CLIENT_MODULES:
        raise HTTPException(status_code=404)
    return FileResponse(BASE_DIR / f"{module}.py")


# ---- Channel socket ----
@app.websocket("/socket/websocket")
async def socket_endpoint(websocket: WebSocket) -> None:
    await websocket.accept()
    joined: Dict[str, Room] = {}

    try:
        while True:
            text = await websocket.receive_text()
            try:
                join_ref, ref, topic, event, payload = decode_frame(text)
            except ValueError as exc:
                logger.warning("Bad frame: %s", exc)
                continue

            if topic == PHOENIX_TOPIC and event == "heartbeat":
                await send_frame(websocket, None, ref, topic, "phx_reply", {"status": "ok", "response": {}})
                continue

            if event == "phx_join":
                if not topic.startswith("room:") or topic == "room:":
                    status, response = error("unmatched topic")
                else:
                    room = get_room(topic)
                    room.members[websocket] = parse_member(websocket, join_ref, payload)
                    joined[topic] = room
                    status, response = "ok", {}
            elif topic not in joined:
                status, response = error("unmatched topic")
            elif event == "phx_leave":
                joined.pop(topic).members.pop(websocket, None)
                status, response = "ok", {}
            else:
                room = joined[topic]
                status, response = await handle_event(room, room.members[websocket], event, payload or {})

            await send_frame(websocket, join_ref, ref, topic, "phx_reply", {"status": status, "response": response})

    except WebSocketDisconnect:
        for room in joined.values():
            room.members.pop(websocket, None)
