"""
Session controller: joins the room, keeps the store in sync with server
pushes and routes clicks and buttons into the interaction state machine.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Coroutine, Optional

from chess_client.channel import CHANNEL_CLOSE, CHANNEL_ERROR, Channel, Transport, WebsocketsSocket
from chess_client.config import SessionConfig, Settings
from chess_client.dialogs import DialogBridge
from chess_client.exceptions import ChannelError, DeserializationError, JoinError
from chess_client.game_state import GameStateStore
from chess_client.interaction import InteractionState, InteractionStateMachine
from chess_client.models import GameState, decode_draw_request, decode_game_over, decode_game_state
from chess_client.move_query import MoveQueryService
from chess_client.view import BoardView

logger = logging.getLogger(__name__)

TransportFactory = Callable[[SessionConfig, Settings], Transport]


def websocket_transport(config: SessionConfig, settings: Settings) -> Transport:
    return WebsocketsSocket(
        settings.endpoint,
        config.join_params(),
        timeout=settings.push_timeout,
        heartbeat_interval=settings.heartbeat_interval,
    )


class GameSession:
    """A joined room. Owns the store and the state machine until `close()`."""

    def __init__(
        self,
        config: SessionConfig,
        settings: Settings,
        transport: Transport,
        channel: Channel,
        view: BoardView,
    ) -> None:
        self.config = config
        self.settings = settings
        self.transport = transport
        self.channel = channel
        self.view = view

        self.store = GameStateStore(view)
        self.dialogs = DialogBridge(view)
        self.machine = InteractionStateMachine(
            color=config.color,
            role=config.role,
            store=self.store,
            moves=MoveQueryService(channel),
            dialogs=self.dialogs,
            channel=channel,
            view=view,
        )
        self.closed = False
        self._ended = asyncio.Event()
        self._tasks: set[asyncio.Task] = set()

    @property
    def state(self) -> InteractionState:
        return self.machine.state

    @property
    def ended(self) -> bool:
        return self.machine.ended

    async def wait_ended(self) -> None:
        await self._ended.wait()

    # ---- Lifecycle ----
    def listen(self) -> None:
        self.channel.on("game_state_updated", self._on_game_state_updated)
        self.channel.on("game_over", self._on_game_over)
        self.channel.on("draw_requested", self._on_draw_requested)
        self.channel.on("draw_denied", self._on_draw_denied)
        self.channel.on(CHANNEL_ERROR, self._on_disconnect)
        self.channel.on(CHANNEL_CLOSE, self._on_disconnect)

    def apply(self, state: GameState) -> None:
        self.store.replace(state)
        self.machine.state_replaced()

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        for task in list(self._tasks):
            task.cancel()
        self.dialogs.dismiss()
        self.store.clear()
        try:
            await self.channel.leave()
        finally:
            await self.transport.close()
            self._ended.set()

    # ---- User input ----
    async def click(self, index: int) -> None:
        await self.machine.click(index)

    async def resign(self) -> None:
        await self.machine.resign()

    async def offer_draw(self) -> None:
        await self.machine.offer_draw()

    # Fire-and-forget variants for DOM callbacks
    def on_click(self, index: int) -> None:
        self._spawn(self.click(index))

    def on_resign(self) -> None:
        self._spawn(self.resign())

    def on_offer_draw(self) -> None:
        self._spawn(self.offer_draw())

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> Optional[asyncio.Task]:
        if self.closed:
            coro.close()
            return None
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Session task failed", exc_info=task.exception())

    # ---- Server pushes ----
    def _on_game_state_updated(self, payload: Any) -> None:
        if self.closed:
            return
        try:
            state = decode_game_state(payload.get("game") if isinstance(payload, dict) else payload)
        except DeserializationError as exc:
            logger.error("Ignoring game_state_updated: %s", exc)
            return
        self.apply(state)

    def _on_game_over(self, payload: Any) -> None:
        if self.closed or self.machine.ended:
            return
        try:
            result = decode_game_over(payload or {})
        except DeserializationError as exc:
            logger.error("Malformed game_over payload: %s", exc)
            result = None

        reason = result.reason if result else ""
        self.machine.end(reason)
        self._ended.set()

        message = reason or "The game has ended."
        if result and result.winner:
            message = f"{message} {result.winner.value.capitalize()} wins."
        logger.info("Game over: %s", message)
        self.view.notify("Game Over!", message, dismissible=self.settings.dismissible_result)

    def _on_draw_requested(self, payload: Any) -> None:
        if self.closed:
            return
        try:
            request = decode_draw_request(payload)
        except DeserializationError as exc:
            logger.error("Ignoring draw_requested: %s", exc)
            return
        self._spawn(self.machine.draw_requested(request.role))

    def _on_draw_denied(self, payload: Any) -> None:
        if self.closed:
            return
        role = payload.get("role") if isinstance(payload, dict) else None
        if role == self.config.color.value:
            return
        self.view.notify("Draw declined", "Your opponent declined the draw offer.")

    def _on_disconnect(self, payload: Any) -> None:
        if self.closed:
            return
        reason = payload.get("reason", "connection lost") if isinstance(payload, dict) else "connection lost"
        logger.error("Lost connection to %s: %s", self.channel.topic, reason)

        self.closed = True
        for task in list(self._tasks):
            task.cancel()
        self.machine.end(reason)
        # Nothing from before the disconnect stays on screen
        self.store.clear()
        self._ended.set()
        self.view.notify("Disconnected", "The connection to the game was lost.", dismissible=False)


async def start_session(
    config: SessionConfig,
    view: BoardView,
    transport_factory: TransportFactory = websocket_transport,
    settings: Optional[Settings] = None,
) -> GameSession:
    """
    Join the room for `config` and return the running session.
    Raises JoinError before anything is painted if the room cannot be joined
    or its state cannot be fetched.
    """
    settings = settings or Settings.from_env()
    transport = transport_factory(config, settings)

    try:
        await transport.connect()
        channel = transport.channel(config.topic, config.join_params())
        await channel.join()
        state = decode_game_state(await channel.push("get_game_state", {}))
    except (ChannelError, DeserializationError) as exc:
        await transport.close()
        raise JoinError(f"could not join {config.topic}: {exc}") from exc

    session = GameSession(config, settings, transport, channel, view)
    view.hide_loader()
    session.apply(state)
    session.listen()
    logger.info("Joined %s as %s %s", config.topic, config.color, config.role)
    return session
