from models import ScoreConfig
from scoring import calculate_percentage, format_score, recorded_time_taken, round1, score, validate_time_taken


TIMED = ScoreConfig(basePoints=10, maxBonus=2, timerEnabled=True, timerSeconds=30)


def test_wrong_answer_scores_nothing():
    result = score(False, 1000, TIMED)
    assert (result.points, result.base, result.speedBonus) == (0, 0, 0)


def test_untimed_correct_answer_gets_base_only():
    cfg = ScoreConfig(basePoints=10, maxBonus=2, timerEnabled=False)
    result = score(True, 0, cfg)
    assert result.points == 10
    assert result.speedBonus == 0


def test_half_time_gets_half_bonus():
    cfg = ScoreConfig(basePoints=10, maxBonus=2, timerEnabled=True, timerSeconds=20)
    result = score(True, 10000, cfg)
    assert result.speedBonus == 1.0
    assert result.points == 11.0


def test_negative_time_clamps_to_instant_answer():
    assert score(True, -50, TIMED) == score(True, 0, TIMED)
    assert score(True, 0, TIMED).points == 12.0


def test_implausible_time_clamps_to_timer_length():
    assert score(True, 9_999_999, TIMED) == score(True, 30000, TIMED)
    assert score(True, 30000, TIMED).points == 10.0


def test_time_over_limit_gets_no_bonus():
    assert score(True, 45000, TIMED).speedBonus == 0


def test_validate_time_taken_bounds():
    assert validate_time_taken(-1, 30) == 0
    assert validate_time_taken(3_600_001, 30) == 30000
    assert validate_time_taken(12345, 30) == 12345
    assert validate_time_taken(40000, 30) == 30000


def test_non_finite_time_is_clamped():
    assert validate_time_taken(float('inf'), 30) == 30000
    assert validate_time_taken(float('-inf'), 30) == 0
    assert validate_time_taken(float('nan'), 30) == 30000
    assert score(True, float('nan'), TIMED) == score(True, 30000, TIMED)


def test_recorded_time_taken():
    untimed = ScoreConfig(timerEnabled=False)
    assert recorded_time_taken(9_999_999, TIMED) == 30000
    assert recorded_time_taken(1234.6, TIMED) == 1235
    assert recorded_time_taken(-5, untimed) == 0
    assert recorded_time_taken(95_000, untimed) == 95_000
    assert recorded_time_taken(float('inf'), untimed) == 3_600_000


def test_points_do_not_increase_with_time():
    previous = None
    for ms in range(0, 30001, 250):
        points = score(True, ms, TIMED).points
        if previous is not None:
            assert points <= previous
        previous = points


def test_scoring_is_deterministic():
    results = {score(True, 7333, TIMED).model_dump_json() for _ in range(50)}
    assert len(results) == 1


def test_bonus_rounds_half_up_to_one_decimal():
    assert score(True, 7500, TIMED).speedBonus == 1.5
    assert round1(0.25) == 0.3
    assert round1(2.449) == 2.4


def test_format_and_percentage():
    assert format_score(11) == '11.0'
    assert calculate_percentage(1, 3) == 33
    assert calculate_percentage(2, 3) == 67
    assert calculate_percentage(5, 0) == 0
