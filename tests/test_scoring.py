from types import SimpleNamespace

import pytest

from pats.utils.scoring import (
    Outcome,
    StatDelta,
    grade,
    grade_scores,
    outcome_delta,
    tally_session,
    win_percentage,
)


@pytest.mark.parametrize(
    "home_score, away_score, expected",
    [
        (110, 100, Outcome.WIN),
        (109, 100, Outcome.PUSH),
        (105, 100, Outcome.LOSS),
    ],
)
def test_home_favorite_against_nine_point_spread(home_score, away_score, expected):
    assert grade_scores("home", -9, home_score, away_score) == expected


def test_underdog_covers_with_points():
    # Away +6.5 loses by 6 and still covers
    assert grade_scores("away", 6.5, 27, 21) == Outcome.WIN
    assert grade_scores("home", -6.5, 27, 21) == Outcome.LOSS


def test_pick_em_game_grades_on_raw_score():
    assert grade_scores("home", 0, 20, 20) == Outcome.PUSH
    assert grade_scores("away", None, 17, 20) == Outcome.WIN


def test_grade_uses_spread_captured_on_pick():
    game = SimpleNamespace(home_score=24, away_score=20, home_spread=-7.0)
    pick = SimpleNamespace(side="home", spread_at_pick=-3.0)

    assert grade(pick, game) == Outcome.WIN


def test_double_down_win_counts_twice():
    delta = outcome_delta(Outcome.WIN, is_double_down=True)

    assert delta.wins == 2
    assert delta.double_down_wins == 1
    assert delta.losses == 0


def test_double_down_loss_counts_twice():
    delta = outcome_delta(Outcome.LOSS, is_double_down=True)

    assert delta.losses == 2
    assert delta.double_down_losses == 1


def test_double_down_push_counts_once():
    delta = outcome_delta(Outcome.PUSH, is_double_down=True)

    assert delta.pushes == 1
    assert delta.double_down_pushes == 1


def test_missed_pick_is_a_single_loss():
    assert outcome_delta(Outcome.MISSED) == StatDelta(losses=1, missed_picks=1)
    assert outcome_delta(Outcome.MISSED, is_double_down=True) == StatDelta(
        losses=1, missed_picks=1
    )


def test_stat_delta_arithmetic():
    a = StatDelta(wins=2, double_down_wins=1)
    b = StatDelta(losses=1, missed_picks=1)

    assert a + b - b == a
    assert -a + a == StatDelta()
    assert (a + b).decided == 3


def _game(row_id, home, away, final=True):
    return SimpleNamespace(id=row_id, home_score=home, away_score=away, is_final=final)


def test_tally_session_counts_missed_picks_as_losses():
    games = [_game(1, 10, 3), _game(2, 20, 21), _game(3, 7, 7)]

    totals = tally_session(["carol"], games, {})

    assert totals["carol"] == StatDelta(losses=3, missed_picks=3)


def test_tally_session_games_without_final_only_count_missed_picks():
    games = [_game(1, 24, 10), _game(2, 3, 0, final=False), _game(3, None, None, final=False)]
    picks = {
        "alice": {
            1: SimpleNamespace(side="home", spread_at_pick=-7, is_double_down=True),
            2: SimpleNamespace(side="away", spread_at_pick=3, is_double_down=False),
        }
    }

    totals = tally_session(["alice", "bob"], games, picks)

    assert totals["alice"] == StatDelta(wins=2, losses=1, missed_picks=1, double_down_wins=1)
    assert totals["bob"] == StatDelta(losses=3, missed_picks=3)


def test_win_percentage_excludes_pushes():
    assert win_percentage(3, 1) == 75.0
    assert win_percentage(0, 0) == 0.0
