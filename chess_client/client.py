"""
Browser entry point (PyScript / Pyodide).

Paints the board into the page, implements `BoardView` on top of the DOM,
provides a channel socket over `js.WebSocket` and starts the session for the
room named in the page's cookies.
"""

import asyncio
import logging

from js import WebSocket, document, window
from pyodide.ffi import create_proxy

from chess_client.channel import ChannelSocket, socket_url
from chess_client.config import SessionConfig, Settings, configure_logging
from chess_client.exceptions import ChannelClosed, ChessClientError
from chess_client.models import BOARD_SIZE, Color
from chess_client.session import GameSession, start_session
from chess_client.view import HIGHLIGHT_CLASSES, DialogKind

logger = logging.getLogger(__name__)

# ---- DOM elements ----
BOARD = document.getElementById("board")
LOADER = document.getElementById("loader")
TURN = document.getElementById("current-turn")
PROMOTION_MENU = document.getElementById("promotion-menu")
CONFIRMATION = document.getElementById("confirmation")
CONFIRMATION_HEADER = document.getElementById("confirmation-header")
CONFIRMATION_MESSAGE = document.getElementById("confirmation-message")
NOTIFICATION = document.getElementById("notification")
NOTIFICATION_HEADER = document.getElementById("notification-header")
NOTIFICATION_MESSAGE = document.getElementById("notification-message")
NOTIFICATION_DISMISS = document.getElementById("notification-dismiss")

PIECE_IMAGES = {
    "white": {
        "king": "https://upload.wikimedia.org/wikipedia/commons/4/42/Chess_klt45.svg",
        "queen": "https://upload.wikimedia.org/wikipedia/commons/1/15/Chess_qlt45.svg",
        "rook": "https://upload.wikimedia.org/wikipedia/commons/7/72/Chess_rlt45.svg",
        "bishop": "https://upload.wikimedia.org/wikipedia/commons/b/b1/Chess_blt45.svg",
        "knight": "https://upload.wikimedia.org/wikipedia/commons/7/70/Chess_nlt45.svg",
        "pawn": "https://upload.wikimedia.org/wikipedia/commons/4/45/Chess_plt45.svg",
    },
    "black": {
        "king": "https://upload.wikimedia.org/wikipedia/commons/f/f0/Chess_kdt45.svg",
        "queen": "https://upload.wikimedia.org/wikipedia/commons/4/47/Chess_qdt45.svg",
        "rook": "https://upload.wikimedia.org/wikipedia/commons/f/ff/Chess_rdt45.svg",
        "bishop": "https://upload.wikimedia.org/wikipedia/commons/9/98/Chess_bdt45.svg",
        "knight": "https://upload.wikimedia.org/wikipedia/commons/e/ef/Chess_ndt45.svg",
        "pawn": "https://upload.wikimedia.org/wikipedia/commons/c/c7/Chess_pdt45.svg",
    },
}

DIALOG_ELEMENTS = {
    DialogKind.PROMOTION: PROMOTION_MENU,
    DialogKind.CONFIRMATION: CONFIRMATION,
}


def is_game_page() -> bool:
    return "/play/" in str(window.location.pathname) or bool(document.getElementById("board"))


def cell(index: int):
    return document.querySelector(f'[data-square-index="{index}"]')


def build_board(orientation: Color) -> None:
    """Create the 64 cells once; index 0 is a1, white sits at the bottom unless we play black."""
    while BOARD.firstChild:
        BOARD.removeChild(BOARD.firstChild)

    ranks = range(7, -1, -1) if orientation is Color.WHITE else range(8)
    files = range(8) if orientation is Color.WHITE else range(7, -1, -1)
    for rank in ranks:
        for file in files:
            btn = document.createElement("button")
            btn.classList.add("sq")
            btn.classList.add("light" if (file + rank) % 2 else "dark")
            btn.setAttribute("data-square-index", str(rank * 8 + file))
            BOARD.appendChild(btn)


class DomBoardView:
    def __init__(self) -> None:
        self._proxies = {}
        NOTIFICATION_DISMISS.addEventListener("click", create_proxy(lambda _evt: self._hide(NOTIFICATION)))

    @staticmethod
    def _hide(element) -> None:
        element.style.display = "none"

    def hide_loader(self) -> None:
        self._hide(LOADER)

    def set_turn(self, turn) -> None:
        TURN.textContent = turn.value if turn else "—"

    def set_occupant(self, index, piece) -> None:
        elem = cell(index)
        elem.classList.remove("white")
        elem.classList.remove("black")
        elem.innerHTML = ""
        if piece is None:
            return

        img = document.createElement("img")
        img.src = PIECE_IMAGES[piece.color.value][piece.kind.value]
        img.alt = f"{piece.color.value} {piece.kind.value}"
        img.style.width = "75%"
        img.style.height = "75%"
        elem.appendChild(img)
        elem.classList.add(piece.color.value)

    def add_class(self, index, name) -> None:
        cell(index).classList.add(name)

    def clear_highlights(self) -> None:
        for index in range(BOARD_SIZE):
            for name in HIGHLIGHT_CLASSES:
                cell(index).classList.remove(name)

    def show_dialog(self, kind, options, header, message) -> None:
        if kind is DialogKind.CONFIRMATION:
            CONFIRMATION_HEADER.textContent = header
            CONFIRMATION_MESSAGE.textContent = message
        else:
            for button in PROMOTION_MENU.querySelectorAll(".promotion-button"):
                offered = button.getAttribute("data-piece") in options
                button.style.display = "" if offered else "none"
        DIALOG_ELEMENTS[kind].style.display = "flex"

    def hide_dialog(self, kind) -> None:
        self._hide(DIALOG_ELEMENTS[kind])

    def add_dialog_listener(self, listener) -> None:
        def on_click(event):
            button = event.target.closest(".promotion-button, .confirm-button")
            if not button:
                return
            value = button.getAttribute("data-piece") or button.getAttribute("data-answer")
            listener(str(value))

        proxy = create_proxy(on_click)
        self._proxies[listener] = proxy
        document.addEventListener("click", proxy)

    def remove_dialog_listener(self, listener) -> None:
        proxy = self._proxies.pop(listener, None)
        if proxy is not None:
            document.removeEventListener("click", proxy)
            proxy.destroy()

    def notify(self, header, message, dismissible=True) -> None:
        NOTIFICATION_HEADER.textContent = header
        NOTIFICATION_MESSAGE.textContent = message
        NOTIFICATION_DISMISS.style.display = "" if dismissible else "none"
        NOTIFICATION.style.display = "flex"


class BrowserSocket(ChannelSocket):
    """Channel socket over the browser's WebSocket."""

    def __init__(self, endpoint, params=None, **kwargs) -> None:
        super().__init__(**kwargs)
        self.url = socket_url(endpoint, params)
        self._ws = None
        self._heartbeat = None

    async def connect(self) -> None:
        opened = asyncio.get_running_loop().create_future()

        def _onopen(evt):
            if not opened.done():
                opened.set_result(None)

        def _onclose(evt):
            if not opened.done():
                opened.set_exception(ChannelClosed(f"could not connect to {self.url}"))
            self.handle_close(f"closed ({evt.code})")

        def _onmessage(evt):
            self.handle_frame(str(evt.data))

        self._ws = WebSocket.new(self.url)
        self._ws.onopen = create_proxy(_onopen)
        self._ws.onclose = create_proxy(_onclose)
        self._ws.onmessage = create_proxy(_onmessage)

        await opened
        self._heartbeat = asyncio.ensure_future(self.heartbeat())

    async def send_text(self, text) -> None:
        if self._ws is None or self.closed:
            raise ChannelClosed("socket is not connected")
        self._ws.send(text)

    async def close(self) -> None:
        if self._heartbeat is not None and self._heartbeat is not asyncio.current_task():
            self._heartbeat.cancel()
        if self._ws is not None:
            self._ws.close()
        self.handle_close("closed by client")


def browser_transport(config, settings):
    endpoint = settings.endpoint
    if endpoint.startswith("/"):
        # Same-origin endpoint like "/socket"
        origin = str(window.location.origin)
        endpoint = origin.replace("http://", "ws://").replace("https://", "wss://") + endpoint
    return BrowserSocket(
        endpoint,
        config.join_params(),
        timeout=settings.push_timeout,
        heartbeat_interval=settings.heartbeat_interval,
    )


def wire_controls(session: GameSession) -> None:
    def on_board_click(event):
        square = event.target.closest("[data-square-index]")
        if not square:
            return
        session.on_click(int(square.getAttribute("data-square-index")))

    BOARD.addEventListener("click", create_proxy(on_board_click))
    document.getElementById("resign-button").addEventListener("click", create_proxy(lambda _e: session.on_resign()))
    document.getElementById("draw-button").addEventListener("click", create_proxy(lambda _e: session.on_offer_draw()))


async def main() -> None:
    configure_logging()
    try:
        config = SessionConfig.from_cookies(str(document.cookie))
    except ChessClientError as exc:
        logger.error("Cannot start: %s", exc)
        return

    build_board(config.color)
    view = DomBoardView()
    try:
        session = await start_session(config, view, browser_transport, Settings(endpoint="/socket"))
    except ChessClientError as exc:
        logger.error("An error occurred: %s", exc)
        view.notify("Unable to join", str(exc), dismissible=False)
        return

    wire_controls(session)
    await session.wait_ended()


if is_game_page():
    asyncio.ensure_future(main())
