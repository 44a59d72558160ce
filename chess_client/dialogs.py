"""
Modal dialogs as awaitables.

The view shows the dialog and forwards raw interaction values to whatever
listener is registered. `DialogBridge.request_choice` registers one listener,
waits for the first qualifying value and removes the listener again before
anything else can run, so a second quick click finds nobody listening.
"""

import asyncio
import logging
from typing import Any, Optional, Sequence

from chess_client.exceptions import DialogConflict
from chess_client.models import PROMOTION_KINDS, PieceKind
from chess_client.view import BoardView, DialogKind

logger = logging.getLogger(__name__)

CONFIRM = "confirm"
CANCEL = "cancel"


class DialogBridge:
    def __init__(self, view: BoardView) -> None:
        self.view = view
        self._kind: Optional[DialogKind] = None
        self._future: Optional[asyncio.Future] = None
        self._listener = None

    @property
    def is_open(self) -> bool:
        return self._future is not None

    async def request_choice(
        self,
        kind: DialogKind,
        options: Sequence[str],
        header: str = "",
        message: str = "",
    ) -> Any:
        """
        Show a dialog and wait for exactly one qualifying answer.

        Resolves to the chosen option for a promotion dialog and to a bool for a
        confirmation. Resolves to None when the dialog is dismissed from outside.
        """
        if self._future is not None:
            raise DialogConflict(f"cannot open a {kind} dialog while a {self._kind} dialog is pending")

        future = asyncio.get_running_loop().create_future()
        allowed = set(options)

        def listener(value: str) -> None:
            if future.done() or value not in allowed:
                return
            self._close()
            future.set_result(value)

        self._kind = kind
        self._future = future
        self._listener = listener
        self.view.add_dialog_listener(listener)
        self.view.show_dialog(kind, list(options), header, message)
        logger.debug("Opened %s dialog", kind)

        try:
            return await future
        finally:
            # The awaiting task was cancelled; don't leave the dialog up
            if self._future is future:
                self._close()

    async def choose_promotion(self, options: Sequence[PieceKind] = PROMOTION_KINDS) -> Optional[PieceKind]:
        choice = await self.request_choice(DialogKind.PROMOTION, [kind.value for kind in options])
        return PieceKind(choice) if choice is not None else None

    async def confirm(self, header: str, message: str) -> Optional[bool]:
        answer = await self.request_choice(DialogKind.CONFIRMATION, [CONFIRM, CANCEL], header, message)
        return None if answer is None else answer == CONFIRM

    def dismiss(self) -> None:
        """Close the pending dialog, if any, resolving it with None."""
        future = self._future
        if future is None:
            return
        self._close()
        if not future.done():
            future.set_result(None)
        logger.debug("Dismissed pending dialog")

    def _close(self) -> None:
        if self._listener is not None:
            self.view.remove_dialog_listener(self._listener)
        if self._kind is not None:
            self.view.hide_dialog(self._kind)
        self._kind = None
        self._future = None
        self._listener = None
