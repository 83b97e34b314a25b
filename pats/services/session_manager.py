"""
Session lifecycle: create -> active (picks, live grading) -> closed -> reopened.

Closing freezes a from-scratch tally of every participant into
ClosedResult rows and counts the session toward sessions played.
Reopening subtracts exactly that snapshot, then replays the grades that
were applied live before the close, so the ledger returns to its
pre-close value.
"""

import logging
from datetime import date as date_type
from datetime import datetime, timezone

from pats import db
from pats.errors import (
    ConflictError,
    DuplicateDoubleDownError,
    GameAlreadyStartedError,
    NotFoundError,
    ValidationError,
)
from pats.models import ClosedResult, Game, GradeRecord, PATSSession, Pick
from pats.models.game import SIDES
from pats.models.ledger import ensure_ledger_entry, ensure_monthly_bucket
from pats.models.pats_session import (
    KIND_GLOBAL,
    KIND_PERSONAL,
    SESSION_KINDS,
    STATUS_ACTIVE,
    STATUS_CLOSED,
)
from pats.services.grading import (
    GradingEngine,
    get_game_or_404,
    get_session_or_404,
    grading_engine,
)
from pats.services.ledger_store import ledger_store
from pats.utils.cache_utils import (
    invalidate_leaderboard_cache,
    invalidate_ledger_views,
    invalidate_session_cache,
)
from pats.utils.scoring import StatDelta, tally_session
from pats.utils.timezone_utils import get_session_date

logger = logging.getLogger(__name__)


def _utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _parse_session_date(value):
    if value is None:
        return get_session_date()
    if isinstance(value, date_type):
        return value
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid session date '{value}', expected YYYY-MM-DD")


class SessionManager:
    """Owns session state transitions and the close-time snapshot"""

    def __init__(self, store=None, engine=None):
        self.store = store or ledger_store
        self.engine = engine or GradingEngine(self.store)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_session(self, kind_or_id):
        """Get a session by id, or the active session of a kind"""
        if kind_or_id in SESSION_KINDS:
            session = PATSSession.get_active(kind_or_id)
            if session is None:
                raise NotFoundError(f"No active {kind_or_id} session")
            return session
        try:
            session_id = int(kind_or_id)
        except (TypeError, ValueError):
            raise ValidationError(f"'{kind_or_id}' is neither a session id nor a kind")
        return get_session_or_404(session_id)

    def get_active_session(self, kind=None, owner_id=None):
        if kind is not None and kind not in SESSION_KINDS:
            raise ValidationError(f"Unknown session kind '{kind}'")
        return PATSSession.get_active(kind, owner_id)

    def get_history(self, limit=None):
        return PATSSession.get_history(limit)

    def get_user_picks(self, session_id, user_id):
        get_session_or_404(session_id)
        return (
            Pick.query.filter_by(session_id=session_id, user_id=user_id)
            .join(Game)
            .order_by(Game.commence_time)
            .all()
        )

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create_session(
        self,
        games,
        participants=None,
        kind=KIND_GLOBAL,
        owner_id=None,
        session_date=None,
        season_ref=None,
    ):
        """
        Open a new session for a slate of games.

        Args:
            games: Ingestion records (dicts with id, home_team, away_team,
                commence_time, home_spread, away_spread, favored)
            participants: User ids expected to pick
            kind: "global" or "personal"
            owner_id: Owner of a personal session
            session_date: Date the session counts toward (defaults to today)
            season_ref: Optional season identifier

        Returns:
            The new PATSSession
        """
        if kind not in SESSION_KINDS:
            raise ValidationError(f"Unknown session kind '{kind}'")
        if kind == KIND_PERSONAL and not owner_id:
            raise ValidationError("Personal sessions need an owner")
        if not games:
            raise ValidationError("A session needs at least one game")

        day = _parse_session_date(session_date)
        participant_ids = []
        for user_id in list(participants or []) + ([owner_id] if owner_id else []):
            user_id = str(user_id)
            if user_id not in participant_ids:
                participant_ids.append(user_id)

        try:
            game_rows = [Game.from_feed(data) for data in games]
        except (KeyError, TypeError, ValueError) as e:
            raise ValidationError(f"Invalid game record: {e}")

        seen = set()
        for game in game_rows:
            if game.external_id in seen:
                raise ValidationError(f"Duplicate game id {game.external_id}")
            seen.add(game.external_id)

        with self.store.transaction("create session"):
            self._ensure_no_active(kind, owner_id)

            session = PATSSession(
                date=day,
                kind=kind,
                owner_id=owner_id if kind == KIND_PERSONAL else None,
                season_ref=season_ref,
                status=STATUS_ACTIVE,
                participants=participant_ids,
            )
            session.games = game_rows
            db.session.add(session)

            for user_id in participant_ids:
                ensure_ledger_entry(user_id)

        logger.info(
            f"Created {kind} session {session.id} for {day} "
            f"with {len(game_rows)} games and {len(participant_ids)} participants"
        )
        return session

    def _ensure_no_active(self, kind, owner_id, exclude_id=None):
        if kind == KIND_PERSONAL:
            active = PATSSession.get_active(KIND_PERSONAL, owner_id)
        else:
            active = PATSSession.get_active(KIND_GLOBAL)
        if active is not None and active.id != exclude_id:
            raise ConflictError(
                f"A {kind} session is already active (session {active.id})"
            )

    # ------------------------------------------------------------------
    # Picks
    # ------------------------------------------------------------------

    def record_pick(
        self,
        session_id,
        user_id,
        game_id,
        side,
        is_double_down=False,
        username=None,
        now=None,
    ):
        """
        Record or replace a user's pick on one game.

        The spread offered for the chosen side right now is locked onto the
        pick. Only one pick per session may carry the double-down.
        """
        user_id = str(user_id)
        if side not in SIDES:
            raise ValidationError(f"Side must be one of {', '.join(SIDES)}")

        with self.store.transaction("record pick"):
            session = get_session_or_404(session_id)
            if not session.is_active:
                raise ValidationError(f"Session {session.id} is closed")

            game = get_game_or_404(session, game_id)
            if not game.is_pickable(now or _utcnow()):
                raise GameAlreadyStartedError(
                    f"{game.away_team} @ {game.home_team} has already started"
                )

            existing = {
                pick.game_id: pick
                for pick in Pick.query.filter_by(session_id=session.id, user_id=user_id)
            }

            if is_double_down:
                other = [
                    pick
                    for game_row_id, pick in existing.items()
                    if pick.is_double_down and game_row_id != game.id
                ]
                if other:
                    raise DuplicateDoubleDownError(
                        "You already have a double-down active on another game"
                    )

            pick = existing.get(game.id)
            if pick is None:
                pick = Pick(session_id=session.id, game_id=game.id, user_id=user_id)
                db.session.add(pick)

            pick.side = side
            pick.spread_at_pick = game.spread_for(side)
            pick.is_double_down = bool(is_double_down)
            pick.submitted_at = _utcnow()

            ensure_ledger_entry(user_id, username)
            if session.add_participant(user_id):
                self.engine.backfill_missed(session, user_id)

        invalidate_session_cache(session_id)
        logger.info(
            f"Pick recorded: session={session_id} user={user_id} game={game_id} "
            f"side={side} spread={pick.spread_at_pick} double_down={bool(is_double_down)}"
        )
        return pick

    # ------------------------------------------------------------------
    # Close / reopen / void
    # ------------------------------------------------------------------

    def close_session(self, session_id, fallback_results=None):
        """
        Close a session and freeze its results.

        Args:
            session_id: Session to close
            fallback_results: Final scores for games the feed never finalised,
                as dicts with game_id, home_score, away_score

        Returns:
            {user_id: closed result dict}
        """
        fallback = {}
        for result in fallback_results or []:
            try:
                fallback[str(result["game_id"])] = (
                    int(result["home_score"]),
                    int(result["away_score"]),
                )
            except (KeyError, TypeError, ValueError) as e:
                raise ValidationError(f"Invalid fallback result: {e}")

        with self.store.transaction("close session"):
            session = get_session_or_404(session_id)
            if not session.is_active:
                raise ValidationError(f"Session {session.id} is already closed")

            for game in session.games:
                if game.graded:
                    continue
                if not game.is_final and game.external_id in fallback:
                    game.set_final(*fallback[game.external_id])
                if game.is_final:
                    self.engine.apply_game(session, game, applied_at_close=True)
                else:
                    charged = self.engine.charge_missed(session, game)
                    logger.warning(
                        f"Session {session.id}: no result for {game.away_team} @ "
                        f"{game.home_team}, picks voided, {charged} missed picks charged"
                    )

            totals = tally_session(
                session.participant_ids, session.games, session.picks_by_user()
            )
            double_down_users = {
                pick.user_id
                for pick in session.picks.filter_by(is_double_down=True).all()
            }

            closed = {}
            for user_id in session.participant_ids:
                delta = totals[user_id]
                used_double_down = user_id in double_down_users
                db.session.add(
                    ClosedResult(
                        session_id=session.id,
                        user_id=user_id,
                        month_key=session.month_key,
                        used_double_down=used_double_down,
                        **delta.to_dict(),
                    )
                )

                entry = ensure_ledger_entry(user_id)
                bucket = ensure_monthly_bucket(entry, session.month_key)
                entry.record_session(used_double_down)
                bucket.record_session(used_double_down)

                closed[user_id] = dict(delta.to_dict(), used_double_down=used_double_down)

            self._check_snapshot(session, totals)

            session.status = STATUS_CLOSED
            session.closed_at = _utcnow()

        invalidate_ledger_views(session)
        logger.info(f"Closed session {session_id} with {len(closed)} participants")
        return closed

    def _check_snapshot(self, session, totals):
        applied = self.engine.applied_totals(session.id)
        for user_id, delta in totals.items():
            if applied.get(user_id, StatDelta()) != delta:
                logger.error(
                    f"Session {session.id}: closed result for {user_id} {delta} "
                    f"differs from applied ledger deltas {applied.get(user_id)}"
                )

    def reopen_session(self, session_id=None):
        """
        Reopen a closed session (the most recent one when no id is given).

        The frozen snapshot is subtracted from all-time and monthly buckets,
        including sessions played and double-downs used. Grade records written
        during the close are dropped and those games become ungraded again;
        games graded live before the close keep their grades.
        """
        with self.store.transaction("reopen session"):
            if session_id is None:
                history = PATSSession.get_history(limit=1)
                if not history:
                    raise NotFoundError("No closed sessions found in history")
                session = history[0]
            else:
                session = get_session_or_404(session_id)

            if not session.is_closed:
                raise ValidationError(f"Session {session.id} is not closed")
            self._ensure_no_active(session.kind, session.owner_id, exclude_id=session.id)

            for result in session.closed_results.all():
                entry = ensure_ledger_entry(result.user_id)
                bucket = ensure_monthly_bucket(entry, result.month_key)
                entry.apply_delta(result.delta, sign=-1)
                bucket.apply_delta(result.delta, sign=-1)
                entry.record_session(result.used_double_down, sign=-1)
                bucket.record_session(result.used_double_down, sign=-1)
                db.session.delete(result)

            replayed = 0
            for game in session.games:
                for record in GradeRecord.query.filter_by(game_id=game.id).all():
                    if record.applied_at_close:
                        db.session.delete(record)
                    else:
                        self.engine.replay_record(record)
                        replayed += 1
                if game.graded_at_close:
                    game.graded = False
                    game.graded_at_close = False

            session.status = STATUS_ACTIVE
            session.closed_at = None
            session.reopened_at = _utcnow()

        invalidate_ledger_views(session)
        logger.info(
            f"Reopened session {session.id}; replayed {replayed} live grades"
        )
        return session

    def void_session(self, session_id, reason=None):
        """Throw away an active session, reverting everything it applied"""
        with self.store.transaction("void session"):
            session = get_session_or_404(session_id)
            if not session.is_active:
                raise ValidationError("Only active sessions can be voided")

            month_key = session.month_key
            summary = {
                "session_id": session.id,
                "date": session.date.isoformat(),
                "reverted_stat_writes": self.engine.revert_session(session),
            }
            db.session.delete(session)

        invalidate_session_cache(session_id)
        invalidate_leaderboard_cache(month_key)
        logger.info(
            f"Voided session {session_id} ({summary['reverted_stat_writes']} reverts)"
            + (f": {reason}" if reason else "")
        )
        return summary

    # ------------------------------------------------------------------
    # Spreads
    # ------------------------------------------------------------------

    def refresh_spreads(self, session_id, updated_games, now=None):
        """
        Replace spreads on games that have not started.

        Picks already made keep the spread they were made at.

        Returns:
            List of {game_id, old, new} for games whose spread changed
        """
        changes = []
        with self.store.transaction("refresh spreads"):
            session = get_session_or_404(session_id)
            if not session.is_active:
                raise ValidationError(f"Session {session.id} is closed")

            for data in updated_games or []:
                game = session.get_game(data.get("id"))
                if game is None or game.has_started(now or _utcnow()):
                    continue

                home_spread = float(data.get("home_spread", game.home_spread))
                away_spread = data.get("away_spread")
                away_spread = -home_spread if away_spread is None else float(away_spread)

                if (home_spread, away_spread) != (game.home_spread, game.away_spread):
                    changes.append(
                        {
                            "game_id": game.external_id,
                            "old": {"home": game.home_spread, "away": game.away_spread},
                            "new": {"home": home_spread, "away": away_spread},
                        }
                    )

                game.home_spread = home_spread
                game.away_spread = away_spread
                if "favored" in data:
                    game.favored = data["favored"]

        invalidate_session_cache(session_id)
        logger.info(f"Refreshed spreads for session {session_id}: {len(changes)} changed")
        return changes


session_manager = SessionManager(engine=grading_engine)
