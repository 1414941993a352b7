import os
from typing import Optional

from pydantic import BaseModel, Field


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    # Scoring defaults (hosts may override per session)
    base_points: float = 10
    max_bonus: float = 2
    # Clamp for host-supplied per-question timers (seconds)
    timer_min_seconds: int = 5
    timer_max_seconds: int = 120
    # Anti-cheat kick threshold
    max_violations: int = Field(default=3, ge=1)
    # Optimistic write attempts before surfacing ConcurrencyConflict
    commit_attempts: int = Field(default=3, ge=1)
    # Room code allocation attempts before giving up
    room_code_attempts: int = 50
    # Server-side auto-reveal timers; tests drive time explicitly instead
    enable_timers: bool = True
    quiz_dir: Optional[str] = None
    log_dir: Optional[str] = None
    log_to_file: bool = True
    log_level: str = "INFO"
    cors_origins: list[str] = ["*"]

    @classmethod
    def from_env(cls) -> "Settings":
        origins = os.environ.get("QUIZROOM_CORS_ORIGINS", "*")
        return cls(
            base_points=float(os.environ.get("QUIZROOM_BASE_POINTS", "10")),
            max_bonus=float(os.environ.get("QUIZROOM_MAX_BONUS", "2")),
            timer_min_seconds=int(os.environ.get("QUIZROOM_TIMER_MIN", "5")),
            timer_max_seconds=int(os.environ.get("QUIZROOM_TIMER_MAX", "120")),
            max_violations=int(os.environ.get("QUIZROOM_MAX_VIOLATIONS", "3")),
            commit_attempts=int(os.environ.get("QUIZROOM_COMMIT_ATTEMPTS", "3")),
            enable_timers=_env_bool("QUIZROOM_ENABLE_TIMERS", True),
            quiz_dir=os.environ.get("QUIZROOM_QUIZ_DIR"),
            log_dir=os.environ.get("QUIZROOM_LOG_DIR"),
            log_to_file=_env_bool("QUIZROOM_LOG_TO_FILE", True),
            log_level=os.environ.get("QUIZROOM_LOG_LEVEL", "INFO"),
            cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
        )

    def clamp_timer(self, seconds: int) -> int:
        return max(self.timer_min_seconds, min(self.timer_max_seconds, seconds))
