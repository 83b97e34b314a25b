"""
Scoring Engine for the PATS ledger

Pure functions: grading one pick against the spread, turning an outcome
into ledger counters, and tallying a whole session from scratch.
Nothing in here touches the database.

Double-down weighting is deliberately asymmetric: a double-down win or
loss counts twice toward wins/losses, a double-down push counts once.
Each double-down outcome also bumps exactly one double-down counter.
"""

from dataclasses import dataclass, fields
from enum import Enum


class Outcome(str, Enum):
    WIN = "win"
    LOSS = "loss"
    PUSH = "push"
    MISSED = "missed"


@dataclass
class StatDelta:
    """Counters added to (or removed from) one ledger bucket"""

    wins: int = 0
    losses: int = 0
    pushes: int = 0
    missed_picks: int = 0
    double_down_wins: int = 0
    double_down_losses: int = 0
    double_down_pushes: int = 0

    def __add__(self, other):
        return StatDelta(
            **{f.name: getattr(self, f.name) + getattr(other, f.name) for f in fields(self)}
        )

    def __neg__(self):
        return StatDelta(**{f.name: -getattr(self, f.name) for f in fields(self)})

    def __sub__(self, other):
        return self + (-other)

    @property
    def decided(self):
        return self.wins + self.losses

    def to_dict(self):
        return {f.name: getattr(self, f.name) for f in fields(self)}


def grade_scores(side, spread, home_score, away_score):
    """
    Grade one side against the spread.

    The spread is added to the picked side's raw score and compared with the
    opponent's raw score.
    """
    if side == "home":
        own, opponent = home_score, away_score
    else:
        own, opponent = away_score, home_score

    adjusted = own + (spread or 0)
    if adjusted == opponent:
        return Outcome.PUSH
    if adjusted > opponent:
        return Outcome.WIN
    return Outcome.LOSS


def grade(pick, game):
    """Grade a pick using the spread captured on the pick, not the game's current one"""
    return grade_scores(pick.side, pick.spread_at_pick, game.home_score, game.away_score)


def outcome_delta(outcome, is_double_down=False):
    """Ledger counters for one graded outcome"""
    if outcome == Outcome.MISSED:
        # Missed picks are never doubled
        return StatDelta(losses=1, missed_picks=1)

    weight = 2 if is_double_down else 1

    if outcome == Outcome.WIN:
        return StatDelta(wins=weight, double_down_wins=int(is_double_down))
    if outcome == Outcome.LOSS:
        return StatDelta(losses=weight, double_down_losses=int(is_double_down))
    return StatDelta(pushes=1, double_down_pushes=int(is_double_down))


def tally_session(participants, games, picks_by_user):
    """
    Recompute every participant's session totals from scratch.

    Every game without a pick is a missed pick, whether or not it has a
    result. Picks only count once their game is final.

    Args:
        participants: iterable of user ids
        games: Game objects in the session
        picks_by_user: {user_id: {game row id: Pick}}

    Returns:
        {user_id: StatDelta}
    """
    totals = {}

    for user_id in participants:
        user_picks = picks_by_user.get(user_id, {})
        total = StatDelta()
        for game in games:
            pick = user_picks.get(game.id)
            if pick is None:
                total = total + outcome_delta(Outcome.MISSED)
            elif game.is_final:
                total = total + outcome_delta(grade(pick, game), pick.is_double_down)
        totals[user_id] = total

    return totals


def win_percentage(wins, losses):
    """Win percentage with pushes excluded from the denominator"""
    decided = wins + losses
    if decided <= 0:
        return 0.0
    return wins / decided * 100
