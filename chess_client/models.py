"""
Wire models for the room protocol.

The server sends board state and moves as JSON (often JSON *strings* nested in
a reply), so everything coming in goes through the `decode_*` helpers, which
turn schema violations into `DeserializationError`.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any, Optional

import chess
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from chess_client.exceptions import DeserializationError

BOARD_SIZE = 64


class Color(StrEnum):
    WHITE = "white"
    BLACK = "black"

    @property
    def opponent(self) -> Color:
        return Color.BLACK if self is Color.WHITE else Color.WHITE


class PieceKind(StrEnum):
    KING = "king"
    QUEEN = "queen"
    ROOK = "rook"
    BISHOP = "bishop"
    KNIGHT = "knight"
    PAWN = "pawn"


class Role(StrEnum):
    PLAYER = "player"
    SPECTATOR = "spectator"


# Order in which promotion choices are offered
PROMOTION_KINDS: tuple[PieceKind, ...] = (
    PieceKind.QUEEN,
    PieceKind.ROOK,
    PieceKind.BISHOP,
    PieceKind.KNIGHT,
)


def square_name(index: int) -> str:
    """Board index (0 = a1, 63 = h8) to algebraic name, for logs and messages."""
    return chess.square_name(index)


class Piece(BaseModel):
    model_config = ConfigDict(frozen=True)

    color: Color
    kind: PieceKind = Field(
        validation_alias=AliasChoices("piece", "kind", "type"),
        serialization_alias="piece",
    )


class GameState(BaseModel):
    """Authoritative board snapshot plus whose turn it is."""

    model_config = ConfigDict(frozen=True)

    board: tuple[Optional[Piece], ...]
    turn: Color

    @field_validator("board")
    @classmethod
    def validate_board_size(cls, value: tuple[Optional[Piece], ...]) -> tuple[Optional[Piece], ...]:
        if len(value) != BOARD_SIZE:
            raise ValueError(f"board must have {BOARD_SIZE} cells, got {len(value)}")
        return value

    def piece_at(self, index: int) -> Optional[Piece]:
        return self.board[index]

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


class Move(BaseModel):
    model_config = ConfigDict(frozen=True)

    from_: int = Field(
        validation_alias=AliasChoices("from", "from_"),
        serialization_alias="from",
        ge=0,
        lt=BOARD_SIZE,
    )
    to: int = Field(ge=0, lt=BOARD_SIZE)
    promote_to: Optional[PieceKind] = None

    def payload(self) -> dict[str, Any]:
        """Body of a `make_move` request. `promote_to` is only sent when set."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)

    def __str__(self) -> str:
        suffix = f"={self.promote_to.value}" if self.promote_to else ""
        return f"{square_name(self.from_)}-{square_name(self.to)}{suffix}"


class GameOver(BaseModel):
    reason: str = Field(default="", validation_alias=AliasChoices("reason", "message"))
    winner: Optional[Color] = None


class DrawRequest(BaseModel):
    role: str


def _decode(model: type[BaseModel], raw: Any, what: str) -> Any:
    try:
        if isinstance(raw, (str, bytes)):
            return model.model_validate_json(raw)
        return model.model_validate(raw)
    except ValidationError as exc:
        raise DeserializationError(what, exc) from exc


def decode_game_state(raw: Any) -> GameState:
    return _decode(GameState, raw, "game state")


def decode_move(raw: Any) -> Move:
    return _decode(Move, raw, "move")


def decode_moves(raw: Any) -> list[Move]:
    if not isinstance(raw, list):
        raise DeserializationError("move list", TypeError(f"expected a list, got {type(raw).__name__}"))
    return [decode_move(item) for item in raw]


def decode_game_over(raw: Any) -> GameOver:
    return _decode(GameOver, raw, "game over")


def decode_draw_request(raw: Any) -> DrawRequest:
    return _decode(DrawRequest, raw, "draw request")
