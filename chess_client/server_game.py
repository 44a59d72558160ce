import chess
from typing import Optional

from chess_client.models import BOARD_SIZE, Color, GameOver, GameState, Move, Piece, PieceKind

KIND_BY_PIECE_TYPE = {
    chess.PAWN: PieceKind.PAWN,
    chess.KNIGHT: PieceKind.KNIGHT,
    chess.BISHOP: PieceKind.BISHOP,
    chess.ROOK: PieceKind.ROOK,
    chess.QUEEN: PieceKind.QUEEN,
    chess.KING: PieceKind.KING,
}
PIECE_TYPE_BY_KIND = {kind: piece_type for piece_type, kind in KIND_BY_PIECE_TYPE.items()}


def color_of(turn: chess.Color) -> Color:
    return Color.WHITE if turn == chess.WHITE else Color.BLACK


# Authoritative game for one room of the development server
class ChessGame:
    def __init__(self) -> None:
        self.board = chess.Board()
        self.draw_offer: Optional[Color] = None
        self.result: Optional[GameOver] = None

    @property
    def turn(self) -> Color:
        return color_of(self.board.turn)

    def state(self) -> GameState:
        cells = []
        for square in range(BOARD_SIZE):
            piece = self.board.piece_at(square)
            if piece is None:
                cells.append(None)
            else:
                cells.append(Piece(color=color_of(piece.color), kind=KIND_BY_PIECE_TYPE[piece.piece_type]))
        return GameState(board=tuple(cells), turn=self.turn)

    def valid_moves(self, index: int) -> list[Move]:
        """Legal moves of the piece on `index`; a promotion shows up once per piece kind."""
        if self.result is not None:
            return []
        return [
            Move(
                from_=mv.from_square,
                to=mv.to_square,
                promote_to=KIND_BY_PIECE_TYPE[mv.promotion] if mv.promotion else None,
            )
            for mv in self.board.legal_moves
            if mv.from_square == index
        ]

    def make_move(self, src: int, dst: int, promote_to: Optional[PieceKind] = None) -> bool:
        """
        Try to play a move.
        Returns True if it was legal and applied, False otherwise.
        """
        if self.result is not None:
            return False

        promotion = PIECE_TYPE_BY_KIND[promote_to] if promote_to else None
        move = chess.Move(src, dst, promotion=promotion)
        if move not in self.board.legal_moves:
            return False

        self.board.push(move)
        # Moving on answers any open draw offer with "no"
        self.draw_offer = None

        outcome = self.board.outcome()
        if outcome is not None:
            winner = color_of(outcome.winner) if outcome.winner is not None else None
            reason = outcome.termination.name.replace("_", " ").capitalize()
            self.result = GameOver(reason=reason, winner=winner)
        return True

    def offer_draw(self, color: Color) -> bool:
        if self.result is not None or self.draw_offer is not None:
            return False
        self.draw_offer = color
        return True

    def answer_draw(self, color: Color, accept: bool) -> bool:
        """The side the offer was made to accepts or declines it."""
        if self.result is not None or self.draw_offer is None or self.draw_offer == color:
            return False
        self.draw_offer = None
        if accept:
            self.result = GameOver(reason="Draw by agreement")
        return True

    def resign(self, color: Color) -> bool:
        if self.result is not None:
            return False
        self.result = GameOver(reason=f"{color.value.capitalize()} resigned", winner=color.opponent)
        return True
