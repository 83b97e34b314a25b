"""
Grading engine: applies final scores to the ledger exactly once.

Live ticks only update displayed scores. The first final for a game
grades every participant (missed picks count as a flat loss) and writes a
GradeRecord per participant. A later final with different scores is a
correction: the game's GradeRecords are subtracted, then the new result
is applied, all inside one ledger transaction.
"""

import logging
from enum import Enum

from pats import db
from pats.errors import NotFoundError, ValidationError
from pats.models import GradeRecord, PATSSession
from pats.models.game import RESULT_FINAL, RESULT_LIVE
from pats.models.ledger import ensure_ledger_entry, ensure_monthly_bucket
from pats.services.ledger_store import ledger_store
from pats.utils.cache_utils import invalidate_ledger_views, invalidate_session_cache
from pats.utils.logging_config import ContextualLogger
from pats.utils.scoring import Outcome, StatDelta, grade, outcome_delta

logger = logging.getLogger(__name__)


class GradeStatus(str, Enum):
    GRADED = "graded"
    CORRECTION_APPLIED = "correction_applied"
    LIVE_UPDATED = "live_updated"
    UNCHANGED = "unchanged"
    IGNORED = "ignored"
    REJECTED = "rejected"


def get_session_or_404(session_id):
    session = db.session.get(PATSSession, session_id) if session_id is not None else None
    if session is None:
        raise NotFoundError(f"Session {session_id} not found")
    return session


def get_game_or_404(session, game_id):
    game = session.get_game(game_id)
    if game is None:
        raise NotFoundError(f"Game {game_id} is not part of session {session.id}")
    return game


class GradingEngine:
    """Applies and reverts graded results against the ledger"""

    def __init__(self, store=None):
        self.store = store or ledger_store

    def apply_result(
        self,
        session_id,
        game_id,
        home_score,
        away_score,
        status=RESULT_FINAL,
        allow_correction=True,
    ):
        """
        Feed one score update for a game into the ledger.

        Args:
            session_id: Session the game belongs to
            game_id: Ingestion id of the game
            home_score, away_score: Raw scores
            status: "live" or "final"
            allow_correction: Whether a differing final may replace a graded one

        Returns:
            GradeStatus describing what happened
        """
        if status not in (RESULT_LIVE, RESULT_FINAL):
            raise ValidationError(f"Unknown result status '{status}'")
        if home_score is None or away_score is None:
            raise ValidationError("Both scores are required")

        with self.store.transaction("apply result"):
            session = get_session_or_404(session_id)
            game = get_game_or_404(session, game_id)

            if status == RESULT_LIVE:
                if game.is_final or game.graded:
                    return GradeStatus.IGNORED
                game.set_live(home_score, away_score)
                result = GradeStatus.LIVE_UPDATED
            else:
                if not session.is_active:
                    raise ValidationError(
                        f"Session {session.id} is closed; reopen it before changing results"
                    )
                result = self._apply_final(
                    session, game, home_score, away_score, allow_correction
                )

        if result == GradeStatus.LIVE_UPDATED:
            invalidate_session_cache(session_id)
        elif result in (GradeStatus.GRADED, GradeStatus.CORRECTION_APPLIED):
            invalidate_ledger_views(session)

        return result

    def _apply_final(self, session, game, home_score, away_score, allow_correction):
        log = ContextualLogger(__name__, {"session": session.id, "game": game.external_id})

        if game.graded:
            if game.has_scores(home_score, away_score):
                return GradeStatus.UNCHANGED
            if not allow_correction:
                log.warning(
                    f"Rejected final {home_score}-{away_score}; "
                    f"already graded as {game.home_score}-{game.away_score}"
                )
                return GradeStatus.REJECTED

            log.info(
                f"Correcting final {game.home_score}-{game.away_score} "
                f"-> {home_score}-{away_score}"
            )
            self.revert_game(session, game)
            result = GradeStatus.CORRECTION_APPLIED
        else:
            result = GradeStatus.GRADED

        game.set_final(home_score, away_score)
        self.apply_game(session, game)
        log.info(f"Final {home_score}-{away_score} applied ({result.value})")
        return result

    def apply_game(self, session, game, applied_at_close=False):
        """Grade every participant on a game that has a final result"""
        picks_by_user = session.picks_by_user()

        for user_id in session.participant_ids:
            pick = picks_by_user.get(user_id, {}).get(game.id)
            if pick is None:
                outcome = Outcome.MISSED
                is_double_down = False
            else:
                outcome = grade(pick, game)
                is_double_down = pick.is_double_down
            self._write_grade(
                session, game, user_id, outcome, is_double_down, applied_at_close
            )

        game.graded = True
        game.graded_at_close = applied_at_close

    def charge_missed(self, session, game):
        """Charge missed picks on a game closed without a result"""
        picks_by_user = session.picks_by_user()
        charged = 0
        for user_id in session.participant_ids:
            if game.id in picks_by_user.get(user_id, {}):
                continue
            self._write_grade(session, game, user_id, Outcome.MISSED, False, True)
            charged += 1
        return charged

    def revert_game(self, session, game):
        """Subtract every delta previously applied for a game"""
        reverted = 0
        for record in GradeRecord.query.filter_by(game_id=game.id).all():
            self._apply_record(record, sign=-1)
            db.session.delete(record)
            reverted += 1
        db.session.flush()

        game.graded = False
        game.graded_at_close = False
        return reverted

    def revert_session(self, session):
        """Subtract every delta applied for a session, returns the count reverted"""
        reverted = 0
        for game in session.games:
            reverted += self.revert_game(session, game)
        return reverted

    def backfill_missed(self, session, user_id):
        """Record missed picks for a late participant on already graded games"""
        for game in session.games:
            if not game.graded:
                continue
            exists = GradeRecord.query.filter_by(game_id=game.id, user_id=user_id).first()
            if exists is None:
                self._write_grade(
                    session, game, user_id, Outcome.MISSED, False, game.graded_at_close
                )

    def replay_record(self, record):
        """Re-apply a retained GradeRecord to the ledger"""
        self._apply_record(record, sign=1)

    def applied_totals(self, session_id):
        """Sum of GradeRecords per participant, {user_id: StatDelta}"""
        totals = {}
        for record in GradeRecord.query.filter_by(session_id=session_id).all():
            totals[record.user_id] = totals.get(record.user_id, StatDelta()) + record.delta
        return totals

    def _write_grade(self, session, game, user_id, outcome, is_double_down, applied_at_close):
        delta = outcome_delta(outcome, is_double_down)
        record = GradeRecord.from_delta(
            session, game, user_id, outcome, delta, is_double_down, applied_at_close
        )
        db.session.add(record)
        self._apply_record(record, sign=1)

    def _apply_record(self, record, sign):
        entry = ensure_ledger_entry(record.user_id)
        bucket = ensure_monthly_bucket(entry, record.month_key)
        delta = record.delta
        entry.apply_delta(delta, sign)
        bucket.apply_delta(delta, sign)


grading_engine = GradingEngine()
