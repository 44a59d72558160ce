import logging
from typing import Optional

from chess_client.models import BOARD_SIZE, GameState
from chess_client.view import BoardView

logger = logging.getLogger(__name__)


# Holds the last authoritative snapshot and keeps the board painted from it
class GameStateStore:
    def __init__(self, view: BoardView) -> None:
        self.view = view
        self._state: Optional[GameState] = None

    def current(self) -> Optional[GameState]:
        return self._state

    def replace(self, state: GameState) -> None:
        """Overwrite the snapshot and repaint every cell from it."""
        self._state = state
        self.render()

    def clear(self) -> None:
        """Forget the snapshot and paint an empty board."""
        self._state = None
        self.render()

    def render(self) -> None:
        state = self._state
        self.view.set_turn(state.turn if state else None)
        for index in range(BOARD_SIZE):
            self.view.set_occupant(index, state.board[index] if state else None)
        logger.debug("Rendered %s", "empty board" if state is None else f"{state.turn} to move")
