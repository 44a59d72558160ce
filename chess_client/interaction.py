"""
Local interaction state for one participant.

The phase (idle, selected, awaiting a dialog, ended) is guarded by
`InteractionFSM`; the data that goes with it (which square, which candidate
moves, which dialog) is the `state` value beside it. Both only change
together, through `InteractionStateMachine._enter`.

Clicks and button presses may suspend on a server round trip or a dialog.
Anything that arrives for the board while a dialog is pending is ignored,
and results that come back after the world moved on (state replaced, game
over) are dropped instead of applied.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Union

from statemachine import State, StateMachine

from chess_client.channel import Channel
from chess_client.dialogs import DialogBridge
from chess_client.exceptions import ChannelError, ChannelReplyError, MoveRejected, QueryFailed
from chess_client.game_state import GameStateStore
from chess_client.models import BOARD_SIZE, PROMOTION_KINDS, Color, Move, PieceKind, Role, square_name
from chess_client.move_query import MoveQueryService
from chess_client.view import PROMOTION, SELECTED, VALID_MOVE, BoardView

logger = logging.getLogger(__name__)


class ConfirmationKind(StrEnum):
    RESIGN = "resign"
    DRAW_REQUEST = "draw_request"


class Origin(StrEnum):
    LOCAL = "local"
    REMOTE = "remote"


# ---- State values ----
@dataclass(frozen=True)
class Idle:
    pass


@dataclass(frozen=True)
class Selected:
    square: int
    candidates: tuple[Move, ...] = field(default=())

    @property
    def destinations(self) -> set[int]:
        return {move.to for move in self.candidates}

    def promotion_options(self, destination: int) -> tuple[PieceKind, ...]:
        kinds = {move.promote_to for move in self.candidates if move.to == destination and move.promote_to}
        return tuple(kind for kind in PROMOTION_KINDS if kind in kinds)


@dataclass(frozen=True)
class AwaitingPromotion:
    square: int
    destination: int
    options: tuple[PieceKind, ...] = PROMOTION_KINDS


@dataclass(frozen=True)
class AwaitingConfirmation:
    kind: ConfirmationKind
    origin: Origin = Origin.LOCAL


@dataclass(frozen=True)
class Ended:
    reason: str = ""


InteractionState = Union[Idle, Selected, AwaitingPromotion, AwaitingConfirmation, Ended]


class InteractionFSM(StateMachine):
    """Allowed phase changes; the state values above carry the data."""

    idle = State("Idle", initial=True)
    selected = State("Selected")
    awaiting_promotion = State("AwaitingPromotion")
    awaiting_confirmation = State("AwaitingConfirmation")
    ended = State("Ended", final=True)

    pick = idle.to(selected)
    promote = selected.to(awaiting_promotion)
    prompt = idle.to(awaiting_confirmation) | selected.to(awaiting_confirmation)
    release = (
        selected.to(idle)
        | awaiting_promotion.to(idle)
        | awaiting_confirmation.to(idle)
    )
    finish = (
        idle.to(ended)
        | selected.to(ended)
        | awaiting_promotion.to(ended)
        | awaiting_confirmation.to(ended)
    )


# Confirmation dialog texts and the request each answer sends
CONFIRMATIONS = {
    (ConfirmationKind.RESIGN, Origin.LOCAL): ("Resign", "Do you really want to resign?", "resign", None),
    (ConfirmationKind.DRAW_REQUEST, Origin.LOCAL): ("Offer draw", "Offer your opponent a draw?", "request_draw", None),
    (ConfirmationKind.DRAW_REQUEST, Origin.REMOTE): (
        "Draw offered",
        "Your opponent offers a draw. Accept?",
        "accept_draw",
        "deny_draw",
    ),
}


class InteractionStateMachine:
    def __init__(
        self,
        *,
        color: Color,
        role: Role,
        store: GameStateStore,
        moves: MoveQueryService,
        dialogs: DialogBridge,
        channel: Channel,
        view: BoardView,
    ) -> None:
        self.color = color
        self.role = role
        self.store = store
        self.moves = moves
        self.dialogs = dialogs
        self.channel = channel
        self.view = view

        self.state: InteractionState = Idle()
        self.fsm = InteractionFSM()
        # Bumped on every snapshot replacement and dialog prompt; in-flight query
        # results from an older generation are stale
        self._generation = 0
        self._querying = False

    # ---- Queries ----
    @property
    def ended(self) -> bool:
        return isinstance(self.state, Ended)

    @property
    def dialog_pending(self) -> bool:
        return isinstance(self.state, (AwaitingPromotion, AwaitingConfirmation)) or self.dialogs.is_open

    def owns_piece_at(self, index: int) -> bool:
        state = self.store.current()
        if state is None:
            return False
        piece = state.piece_at(index)
        return piece is not None and piece.color == self.color

    # ---- Board clicks ----
    async def click(self, index: int) -> None:
        if not 0 <= index < BOARD_SIZE:
            logger.debug("Ignoring click on out-of-range index %r", index)
            return
        state = self.state
        if isinstance(state, (Ended, AwaitingPromotion, AwaitingConfirmation)):
            logger.debug("Ignoring click on %s while %s", square_name(index), type(state).__name__)
            return
        if self._querying:
            logger.debug("Ignoring click on %s: valid moves lookup in flight", square_name(index))
            return
        if self.role is Role.SPECTATOR:
            return

        if isinstance(state, Selected):
            if index in state.destinations:
                self.view.clear_highlights()
                options = state.promotion_options(index)
                if options:
                    await self._promote(state.square, index, options)
                else:
                    self._enter("release", Idle())
                    await self._submit(Move(from_=state.square, to=index))
                return

            # Anywhere else: drop the selection, then treat it as a fresh click
            self._clear_selection()

        await self._select(index)

    async def _select(self, index: int) -> None:
        if not self.owns_piece_at(index):
            return

        generation = self._generation
        self._querying = True
        try:
            candidates = await self.moves.query_valid_moves(index)
        except QueryFailed as exc:
            logger.warning("%s", exc)
            self.view.notify("Move lookup failed", f"Could not get the moves for {square_name(index)}.")
            return
        finally:
            self._querying = False

        if generation != self._generation or not isinstance(self.state, Idle):
            logger.debug("Discarding stale moves for %s", square_name(index))
            return
        if not candidates:
            return

        selection = Selected(index, tuple(candidates))
        self._enter("pick", selection)
        self.view.add_class(index, SELECTED)
        for destination in sorted(selection.destinations):
            self.view.add_class(destination, VALID_MOVE)
            if selection.promotion_options(destination):
                self.view.add_class(destination, PROMOTION)

    async def _promote(self, square: int, destination: int, options: tuple[PieceKind, ...]) -> None:
        self._enter("promote", AwaitingPromotion(square, destination, options))
        kind = await self.dialogs.choose_promotion(options)
        if kind is None or not isinstance(self.state, AwaitingPromotion):
            return
        self._enter("release", Idle())
        await self._submit(Move(from_=square, to=destination, promote_to=kind))

    async def _submit(self, move: Move) -> None:
        try:
            await self.channel.push("make_move", move.payload())
        except ChannelError as exc:
            reason = exc.reason if isinstance(exc, ChannelReplyError) else str(exc)
            rejected = MoveRejected(move, reason)
            logger.warning("%s", rejected)
            self.view.notify("Move rejected", str(rejected))

    def _clear_selection(self) -> None:
        self.view.clear_highlights()
        if isinstance(self.state, Selected):
            self._enter("release", Idle())

    # ---- Buttons ----
    async def resign(self) -> None:
        await self._confirm(ConfirmationKind.RESIGN, Origin.LOCAL)

    async def offer_draw(self) -> None:
        await self._confirm(ConfirmationKind.DRAW_REQUEST, Origin.LOCAL)

    async def draw_requested(self, requested_by: str) -> None:
        if self.role is Role.SPECTATOR or requested_by == self.color.value:
            return
        await self._confirm(ConfirmationKind.DRAW_REQUEST, Origin.REMOTE)

    async def _confirm(self, kind: ConfirmationKind, origin: Origin) -> None:
        if self.ended:
            return
        if self.dialog_pending:
            # A second dialog never opens; the newer prompt is dropped
            logger.info("Dropping %s %s prompt: a dialog is already pending", origin, kind)
            return
        if self.role is Role.SPECTATOR:
            return

        header, message, on_confirm, on_deny = CONFIRMATIONS[(kind, origin)]
        self._clear_selection()
        self._generation += 1
        self._enter("prompt", AwaitingConfirmation(kind, origin))

        answer = await self.dialogs.confirm(header, message)
        if answer is None or not isinstance(self.state, AwaitingConfirmation):
            return
        self._enter("release", Idle())

        event = on_confirm if answer else on_deny
        if event is None:
            return
        try:
            await self.channel.push(event, {})
        except ChannelError as exc:
            logger.warning("%r failed: %s", event, exc)
            self.view.notify("Request failed", f"Could not send {event.replace('_', ' ')}.")

    # ---- Server pushes ----
    def state_replaced(self) -> None:
        """A new snapshot arrived: candidate moves from the old one are void."""
        self._generation += 1
        if isinstance(self.state, Selected):
            self._clear_selection()

    def end(self, reason: str = "") -> None:
        if self.ended:
            return
        self.view.clear_highlights()
        self._enter("finish", Ended(reason))
        self.dialogs.dismiss()

    def _enter(self, event: str, state: InteractionState) -> None:
        self.fsm.send(event)
        logger.debug("%s -> %s", event, state)
        self.state = state
