import logging
import os
from dataclasses import dataclass

from chess_client.exceptions import ConfigError
from chess_client.models import Color, Role

# Socket endpoint of the room server. The channel transport appends "/websocket".
ENDPOINT = os.environ.get("CHESS_CLIENT_ENDPOINT", "ws://localhost:4000/socket")

# Seconds to wait for the reply to any pushed request.
PUSH_TIMEOUT = float(os.environ.get("CHESS_CLIENT_PUSH_TIMEOUT", "10"))

HEARTBEAT_INTERVAL = float(os.environ.get("CHESS_CLIENT_HEARTBEAT_INTERVAL", "30"))

# Whether the game-over notification can be closed by the player.
DISMISSIBLE_RESULT = os.environ.get("CHESS_CLIENT_DISMISSIBLE_RESULT", "true").lower() in ("1", "true", "yes")

LOG_LEVEL = os.environ.get("CHESS_CLIENT_LOG_LEVEL", "INFO")

# Cookie names set by the surrounding page
GAME_CODE_COOKIE = "current_game_code"
GAME_COLOR_COOKIE = "current_game_color"
GAME_ROLE_COOKIE = "current_game_role"


@dataclass(frozen=True)
class Settings:
    endpoint: str = ENDPOINT
    push_timeout: float = PUSH_TIMEOUT
    heartbeat_interval: float = HEARTBEAT_INTERVAL
    dismissible_result: bool = DISMISSIBLE_RESULT

    @classmethod
    def from_env(cls) -> "Settings":
        return cls()


def configure_logging(level: str = LOG_LEVEL) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def parse_cookies(cookie_string: str) -> dict[str, str]:
    """Parse a `document.cookie` style string ("a=1; b=2")."""
    cookies: dict[str, str] = {}
    for part in cookie_string.split(";"):
        name, sep, value = part.partition("=")
        if not sep:
            continue
        cookies[name.strip()] = value.strip()
    return cookies


@dataclass(frozen=True)
class SessionConfig:
    """Who we are in which room."""

    game_code: str
    color: Color
    role: Role = Role.PLAYER

    @classmethod
    def from_cookies(cls, cookie_string: str) -> "SessionConfig":
        cookies = parse_cookies(cookie_string)

        game_code = cookies.get(GAME_CODE_COOKIE, "")
        if not game_code:
            raise ConfigError(f"cookie {GAME_CODE_COOKIE!r} is not set")

        try:
            color = Color(cookies.get(GAME_COLOR_COOKIE, ""))
        except ValueError:
            raise ConfigError(
                f"cookie {GAME_COLOR_COOKIE!r} must be 'white' or 'black', got {cookies.get(GAME_COLOR_COOKIE)!r}"
            ) from None

        try:
            role = Role(cookies.get(GAME_ROLE_COOKIE, Role.PLAYER.value))
        except ValueError:
            raise ConfigError(f"unknown role {cookies.get(GAME_ROLE_COOKIE)!r}") from None

        return cls(game_code=game_code, color=color, role=role)

    @property
    def topic(self) -> str:
        return f"room:{self.game_code}"

    def join_params(self) -> dict[str, str]:
        return {
            GAME_CODE_COOKIE: self.game_code,
            GAME_COLOR_COOKIE: self.color.value,
            GAME_ROLE_COOKIE: self.role.value,
        }
