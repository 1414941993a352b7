"""
Scoring engine.

One scheme for every path: base points for a correct answer plus a speed
bonus that decays linearly from ``maxBonus`` at 0 ms to nothing at the time
limit. Rounding is done with ``Decimal`` half-up to one place so results are
identical across calls and match the client's ``toFixed(1)`` display.
"""

from __future__ import annotations

import math
from decimal import Decimal, ROUND_HALF_UP

from logger import get_logger
from models import ScoreConfig, ScoreResult

logger = get_logger("QuizRoom.scoring")

# Anything above an hour is a timestamp that leaked in where a duration belongs
MAX_PLAUSIBLE_MS = 3_600_000

_ONE_PLACE = Decimal("0.1")


def round1(value: float) -> float:
    return float(Decimal(repr(value)).quantize(_ONE_PLACE, rounding=ROUND_HALF_UP))


def validate_time_taken(time_taken_ms: float, timer_seconds: int) -> float:
    """Clamp a reported duration into [0, timer_seconds * 1000]"""
    max_time_ms = timer_seconds * 1000

    if math.isnan(time_taken_ms):
        logger.warning("Time taken is not a number, resetting to max")
        return max_time_ms

    if time_taken_ms < 0:
        logger.warning(f"Negative time taken detected, clamping to 0: {time_taken_ms}")
        return 0

    if time_taken_ms > MAX_PLAUSIBLE_MS:
        logger.warning(f"Unreasonably large time taken detected, resetting to max: {time_taken_ms}")
        return max_time_ms

    return min(time_taken_ms, max_time_ms)


def recorded_time_taken(time_taken_ms: float, config: ScoreConfig) -> int:
    """Duration stored on the answer, clamped the same way scoring sees it.

    Untimed questions have no limit of their own, so they are bounded by
    ``MAX_PLAUSIBLE_MS`` instead.
    """
    if config.timerEnabled and config.timerSeconds > 0:
        limit_seconds = config.timerSeconds
    else:
        limit_seconds = MAX_PLAUSIBLE_MS // 1000
    return int(round(validate_time_taken(time_taken_ms, limit_seconds)))


def score(is_correct: bool, time_taken_ms: float, config: ScoreConfig) -> ScoreResult:
    """Points for one answer: base plus linear speed bonus, rounded to 0.1"""
    if not is_correct:
        return ScoreResult()

    base = config.basePoints
    if not config.timerEnabled or config.timerSeconds <= 0:
        return ScoreResult(points=round1(base), base=base, speedBonus=0.0)

    validated = validate_time_taken(time_taken_ms, config.timerSeconds)
    total_ms = config.timerSeconds * 1000
    bonus_ratio = max(0.0, 1 - (validated / total_ms))
    speed_bonus = round1(config.maxBonus * bonus_ratio)

    return ScoreResult(
        points=round1(base + speed_bonus),
        base=base,
        speedBonus=speed_bonus,
    )


def format_score(points: float) -> str:
    return f"{round1(points):.1f}"


def calculate_percentage(earned_points: float, total_possible_points: float) -> int:
    if total_possible_points == 0:
        return 0
    return int(Decimal(repr(earned_points / total_possible_points * 100)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
