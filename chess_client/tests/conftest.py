import inspect
from collections import defaultdict

import chess
import pytest
from fastapi.testclient import TestClient

from chess_client.config import SessionConfig, Settings
from chess_client.dialogs import DialogBridge
from chess_client.game_state import GameStateStore
from chess_client.interaction import InteractionStateMachine
from chess_client.models import Color, Role
from chess_client.move_query import MoveQueryService
from chess_client.server import app, rooms
from chess_client.server_game import ChessGame
from chess_client.view import HIGHLIGHT_CLASSES


class FakeChannel:
    """Records pushes; replies come from `replies[event]` (value, exception, or callable)."""

    def __init__(self, topic: str = "room:abc123") -> None:
        self.topic = topic
        self.pushes = []
        self.replies = {}
        self.handlers = defaultdict(list)
        self.join_error = None
        self.joined = False
        self.left = False

    async def join(self):
        if self.join_error is not None:
            raise self.join_error
        self.joined = True
        return {}

    async def push(self, event, payload=None):
        payload = payload or {}
        self.pushes.append((event, payload))
        reply = self.replies.get(event, {})
        if callable(reply):
            reply = reply(payload)
        if inspect.isawaitable(reply):
            reply = await reply
        if isinstance(reply, Exception):
            raise reply
        return reply

    def on(self, event, handler):
        self.handlers[event].append(handler)

    def emit(self, event, payload):
        for handler in list(self.handlers[event]):
            handler(payload)

    async def leave(self):
        self.left = True

    def sent(self, event):
        return [payload for name, payload in self.pushes if name == event]

    def events(self):
        return [name for name, _ in self.pushes]


class FakeTransport:
    def __init__(self, channel: FakeChannel) -> None:
        self.chan = channel
        self.connect_error = None
        self.connected = False
        self.closed = False
        self.channel_params = None

    async def connect(self):
        if self.connect_error is not None:
            raise self.connect_error
        self.connected = True

    def channel(self, topic, params=None):
        self.chan.topic = topic
        self.channel_params = params
        return self.chan

    async def close(self):
        self.closed = True


class FakeView:
    def __init__(self) -> None:
        self.loader_hidden = False
        self.turn = None
        self.cells = {}
        self.classes = defaultdict(set)
        self.open_dialog = None
        self.listeners = []
        self.notifications = []
        self.painted = 0

    def hide_loader(self):
        self.loader_hidden = True

    def set_turn(self, turn):
        self.turn = turn

    def set_occupant(self, index, piece):
        self.painted += 1
        self.cells[index] = piece
        self.classes[index] -= {"white", "black"}
        if piece is not None:
            self.classes[index].add(piece.color.value)

    def add_class(self, index, name):
        self.classes[index].add(name)

    def clear_highlights(self):
        for names in self.classes.values():
            names -= set(HIGHLIGHT_CLASSES)

    def cells_with(self, name):
        return {index for index, names in self.classes.items() if name in names}

    def show_dialog(self, kind, options, header, message):
        assert self.open_dialog is None, "two dialogs open at once"
        self.open_dialog = (kind, tuple(options), header, message)

    def hide_dialog(self, kind):
        self.open_dialog = None

    def add_dialog_listener(self, listener):
        self.listeners.append(listener)

    def remove_dialog_listener(self, listener):
        self.listeners.remove(listener)

    def notify(self, header, message, dismissible=True):
        self.notifications.append((header, message, dismissible))

    def answer(self, value):
        """Simulate a click inside the open dialog."""
        for listener in list(self.listeners):
            listener(value)


def state_from_fen(fen: str):
    game = ChessGame()
    game.board = chess.Board(fen)
    return game.state()


@pytest.fixture()
def channel():
    return FakeChannel()


@pytest.fixture()
def view():
    return FakeView()


@pytest.fixture()
def transport(channel):
    return FakeTransport(channel)


@pytest.fixture()
def settings():
    return Settings(endpoint="ws://test/socket", push_timeout=1.0, heartbeat_interval=30.0, dismissible_result=True)


@pytest.fixture()
def white_config():
    return SessionConfig(game_code="abc123", color=Color.WHITE)


@pytest.fixture()
def initial_state():
    return ChessGame().state()


@pytest.fixture()
def from_fen():
    return state_from_fen


@pytest.fixture()
def store(view, initial_state):
    store = GameStateStore(view)
    store.replace(initial_state)
    return store


@pytest.fixture()
def machine(channel, view, store):
    return InteractionStateMachine(
        color=Color.WHITE,
        role=Role.PLAYER,
        store=store,
        moves=MoveQueryService(channel),
        dialogs=DialogBridge(view),
        channel=channel,
        view=view,
    )


@pytest.fixture()
def server_client():
    rooms.clear()
    with TestClient(app) as client:
        yield client
    rooms.clear()
