import logging

from chess_client.channel import Channel
from chess_client.exceptions import ChannelError, DeserializationError, QueryFailed
from chess_client.models import Move, decode_moves, square_name

logger = logging.getLogger(__name__)


class MoveQueryService:
    """Asks the server which moves the piece on a square can make."""

    def __init__(self, channel: Channel) -> None:
        self.channel = channel

    async def query_valid_moves(self, from_index: int) -> list[Move]:
        """
        One `get_valid_moves` round trip.
        An empty list means the piece has no legal move; any transport or
        decoding problem raises QueryFailed.
        """
        try:
            reply = await self.channel.push("get_valid_moves", {"board_index": from_index})
            moves = decode_moves(reply)
        except (ChannelError, DeserializationError) as exc:
            raise QueryFailed(from_index, exc) from exc

        stray = [move for move in moves if move.from_ != from_index]
        if stray:
            raise QueryFailed(
                from_index,
                DeserializationError("move list", ValueError(f"moves not starting on {square_name(from_index)}: {stray}")),
            )

        logger.debug("%d valid moves from %s", len(moves), square_name(from_index))
        return moves
