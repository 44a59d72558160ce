"""Rendering contract the session paints through. The DOM implementation lives in `client.py`."""

from enum import StrEnum
from typing import Callable, Optional, Protocol, Sequence

from chess_client.models import Color, Piece

# CSS state classes on board cells
SELECTED = "selected"
VALID_MOVE = "valid-move"
PROMOTION = "promotion"
HIGHLIGHT_CLASSES = (SELECTED, VALID_MOVE, PROMOTION)


class DialogKind(StrEnum):
    PROMOTION = "promotion"
    CONFIRMATION = "confirmation"


# Raw value of a dialog interaction: a piece name for the promotion menu,
# "confirm"/"cancel" for a confirmation.
DialogListener = Callable[[str], None]


class BoardView(Protocol):
    def hide_loader(self) -> None: ...

    def set_turn(self, turn: Optional[Color]) -> None: ...

    def set_occupant(self, index: int, piece: Optional[Piece]) -> None:
        """Replace whatever the cell shows with `piece` (or nothing), color class included."""

    def add_class(self, index: int, name: str) -> None: ...

    def clear_highlights(self) -> None:
        """Remove every HIGHLIGHT_CLASSES class from every cell."""

    def show_dialog(self, kind: DialogKind, options: Sequence[str], header: str, message: str) -> None: ...

    def hide_dialog(self, kind: DialogKind) -> None: ...

    def add_dialog_listener(self, listener: DialogListener) -> None: ...

    def remove_dialog_listener(self, listener: DialogListener) -> None: ...

    def notify(self, header: str, message: str, dismissible: bool = True) -> None: ...
