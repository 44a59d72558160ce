import chess

from chess_client.models import Color, Piece, PieceKind
from chess_client.server_game import ChessGame


def test_initial_state_is_rank_major():
    state = ChessGame().state()

    assert state.turn is Color.WHITE
    assert state.board[0] == Piece(color=Color.WHITE, kind=PieceKind.ROOK)
    assert state.board[4] == Piece(color=Color.WHITE, kind=PieceKind.KING)
    assert state.board[12] == Piece(color=Color.WHITE, kind=PieceKind.PAWN)
    assert state.board[60] == Piece(color=Color.BLACK, kind=PieceKind.KING)
    assert state.board[28] is None


def test_valid_moves_from_e2():
    moves = ChessGame().valid_moves(12)
    assert sorted(move.to for move in moves) == [20, 28]
    assert all(move.from_ == 12 and move.promote_to is None for move in moves)


def test_valid_moves_of_empty_square_is_empty():
    assert ChessGame().valid_moves(28) == []


def test_legal_move_updates_state():
    game = ChessGame()

    # Starting position: e2e4 is legal
    assert game.make_move(12, 28) is True

    state = game.state()
    assert state.turn is Color.BLACK  # after white moves, black to move
    assert state.board[12] is None
    assert state.board[28] == Piece(color=Color.WHITE, kind=PieceKind.PAWN)
    assert game.result is None


def test_illegal_move_is_rejected():
    game = ChessGame()

    # e2e5 is illegal (pawn cannot move 3 squares)
    assert game.make_move(12, 36) is False
    assert len(game.board.move_stack) == 0


def test_promotion_needs_and_uses_piece_kind():
    game = ChessGame()
    game.board = chess.Board("8/P7/8/8/8/8/8/k6K w - - 0 1")

    kinds = {move.promote_to for move in game.valid_moves(48)}
    assert kinds == {PieceKind.QUEEN, PieceKind.ROOK, PieceKind.BISHOP, PieceKind.KNIGHT}

    assert game.make_move(48, 56) is False
    assert game.make_move(48, 56, PieceKind.KNIGHT) is True
    assert game.state().board[56] == Piece(color=Color.WHITE, kind=PieceKind.KNIGHT)


def test_checkmate_sets_result():
    game = ChessGame()
    # Fool's mate
    for src, dst in [(13, 21), (52, 36), (14, 30), (59, 31)]:
        assert game.make_move(src, dst)

    assert game.result is not None
    assert game.result.winner is Color.BLACK
    assert game.result.reason == "Checkmate"
    assert game.valid_moves(12) == []
    assert game.make_move(12, 20) is False


def test_draw_offer_must_be_answered_by_the_opponent():
    game = ChessGame()
    assert game.offer_draw(Color.WHITE)
    assert not game.offer_draw(Color.BLACK)
    assert not game.answer_draw(Color.WHITE, accept=True)

    assert game.answer_draw(Color.BLACK, accept=False)
    assert game.result is None
    assert game.draw_offer is None

    game.offer_draw(Color.BLACK)
    assert game.answer_draw(Color.WHITE, accept=True)
    assert game.result.reason == "Draw by agreement"
    assert game.result.winner is None


def test_resign_gives_the_opponent_the_win():
    game = ChessGame()
    assert game.resign(Color.WHITE)
    assert game.result.winner is Color.BLACK
    assert not game.resign(Color.BLACK)

