"""
QuizRoom Backend Logging
========================
Console logging plus two rotating files under ``Settings.log_dir``
(``QUIZROOM_LOG_DIR``, default backend/logs/):

  - quizroom.log           General backend log, every line tagged with the
                           request id that produced it
  - game_events.jsonl      One JSON object per game event (session created,
                           participant joined, answer scored, question
                           revealed, player kicked, ...). This is the score
                           audit trail: replaying the ``answer_submitted``
                           lines of a room reproduces its leaderboard.

``setup_logging`` is driven by ``Settings`` and may be called again with
different settings (each ``create_app`` does); the handlers it installed
last time are removed and closed first.
"""

from __future__ import annotations

import json
import logging
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from settings import Settings

APP_LOGGER = "QuizRoom"
GAME_EVENT_LOGGER = "game.events"

DEFAULT_LOG_DIR = Path(__file__).parent / "logs"

# ---------------------------------------------------------------------------
# Request id: one per HTTP request / WebSocket message, set by main.py
# ---------------------------------------------------------------------------

_request_id: ContextVar[str] = ContextVar("request_id", default="-")


def set_request_id(rid: str | None = None) -> str:
    """Bind a correlation id to the current context, generating one if needed"""
    rid = rid or uuid.uuid4().hex[:12]
    _request_id.set(rid)
    return rid


def get_request_id() -> str:
    return _request_id.get()


class _RequestIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = get_request_id()  # type: ignore[attr-defined]
        return True

# ---------------------------------------------------------------------------
# Formatters
# ---------------------------------------------------------------------------

_FILE_FMT = logging.Formatter(
    fmt="%(asctime)s | %(levelname)-8s | %(name)-20s | [%(request_id)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    defaults={"request_id": "-"},
)

_CONSOLE_FMT = logging.Formatter(
    fmt="%(asctime)s | %(levelname)s | %(message)s",
    datefmt="%H:%M:%S",
)


class GameEventFormatter(logging.Formatter):
    """Renders the ``game_event`` dict attached by ``log_game_event`` as one JSON line"""

    def format(self, record: logging.LogRecord) -> str:
        event = getattr(record, "game_event", None)
        if event is None:
            event = {"event": record.getMessage()}
        return json.dumps(event, default=str)

# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------

# (logger name, handler) pairs owned by the current configuration
_installed: list[tuple[str, logging.Handler]] = []


def _install(logger_name: str, handler: logging.Handler) -> None:
    logging.getLogger(logger_name).addHandler(handler)
    _installed.append((logger_name, handler))


def _uninstall() -> None:
    while _installed:
        logger_name, handler = _installed.pop()
        logging.getLogger(logger_name).removeHandler(handler)
        handler.close()


def resolve_log_dir(settings: "Settings") -> Path:
    return Path(settings.log_dir) if settings.log_dir else DEFAULT_LOG_DIR


def setup_logging(settings: "Settings") -> Optional[Path]:
    """(Re)configure console, file and game-event logging.

    Returns the log directory, or ``None`` when file logging is off.
    """
    _uninstall()
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)

    console = logging.StreamHandler()
    console.setLevel(level)
    console.setFormatter(_CONSOLE_FMT)
    _install("", console)

    game_logger = logging.getLogger(GAME_EVENT_LOGGER)
    game_logger.setLevel(logging.INFO)
    # raw JSON never goes to the console
    game_logger.propagate = False

    if not settings.log_to_file:
        _install(GAME_EVENT_LOGGER, logging.NullHandler())
        return None

    directory = resolve_log_dir(settings)
    directory.mkdir(parents=True, exist_ok=True)

    general = RotatingFileHandler(
        directory / "quizroom.log", maxBytes=5 * 1024 * 1024, backupCount=5, encoding="utf-8"
    )
    general.setLevel(logging.DEBUG)
    general.addFilter(_RequestIdFilter())
    general.setFormatter(_FILE_FMT)
    _install("", general)

    events = RotatingFileHandler(
        directory / "game_events.jsonl", maxBytes=10 * 1024 * 1024, backupCount=10, encoding="utf-8"
    )
    events.setFormatter(GameEventFormatter())
    _install(GAME_EVENT_LOGGER, events)

    get_logger().info(f"📁 Logging initialised – log directory: {directory.resolve()}")
    return directory


def get_logger(name: str = APP_LOGGER) -> logging.Logger:
    return logging.getLogger(name)

# ---------------------------------------------------------------------------
# Game events
# ---------------------------------------------------------------------------

def build_game_event(
    event_type: str,
    *,
    session_code: str | None = None,
    player_id: str | None = None,
    data: dict[str, Any] | None = None,
) -> dict[str, Any]:
    record: dict[str, Any] = {
        "ts": datetime.now(timezone.utc).isoformat(),
        "event": event_type,
        "request_id": get_request_id(),
    }
    if session_code:
        record["session"] = session_code
    if player_id:
        record["player_id"] = player_id
    if data:
        # event fields above always win over payload keys
        record.update({k: v for k, v in data.items() if k not in record})
    return record


def log_game_event(
    event_type: str,
    *,
    session_code: str | None = None,
    player_id: str | None = None,
    data: dict[str, Any] | None = None,
) -> None:
    """Append one structured event to game_events.jsonl"""
    record = build_game_event(event_type, session_code=session_code, player_id=player_id, data=data)
    logging.getLogger(GAME_EVENT_LOGGER).info(event_type, extra={"game_event": record})
