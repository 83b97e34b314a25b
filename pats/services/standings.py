"""
Session standings, derived on read and cached briefly.

Missed picks on locked games show up here as a loss, but that loss is a
display inference only. The ledger is written by the grading engine and
the session manager, never from here.
"""

import logging
from datetime import datetime, timezone

from pats import db
from pats.models.ledger import UserLedgerEntry
from pats.services.grading import get_session_or_404
from pats.utils.cache_utils import cached_view, standings_cache_key
from pats.utils.scoring import grade, outcome_delta, win_percentage

logger = logging.getLogger(__name__)


def standings_sort_key(row):
    decided = row["wins"] + row["losses"]
    if decided == 0:
        # Nothing decided yet, rank by activity at the bottom
        return (1, -row["picks_made"])
    return (0, -row["win_percentage"], -row["wins"])


class StandingsService:
    def get_standings(self, session_id, force_refresh=False, now=None):
        """
        Get standings for a session

        Args:
            session_id: Session to rank
            force_refresh: Rebuild even if a cached copy exists
            now: Clock override used to decide which games are locked

        Returns:
            dict with session info and ranked participant rows
        """
        return cached_view(
            standings_cache_key(session_id),
            lambda: self.build_standings(session_id, now),
            "STANDINGS_CACHE_TIMEOUT",
            force_refresh=force_refresh,
        )

    def build_standings(self, session_id, now=None):
        session = get_session_or_404(session_id)
        now = now or datetime.now(timezone.utc)
        picks_by_user = session.picks_by_user()

        rows = []
        for user_id in session.participant_ids:
            user_picks = picks_by_user.get(user_id, {})
            row = {
                "user_id": user_id,
                "wins": 0,
                "losses": 0,
                "pushes": 0,
                "pending": 0,
                "missed": 0,
                "picks_made": len(user_picks),
                "double_down": None,
            }

            for game in session.games:
                pick = user_picks.get(game.id)
                if pick is not None and pick.is_double_down:
                    row["double_down"] = game.external_id

                if not game.has_started(now) and not game.is_final:
                    continue

                if pick is None:
                    row["missed"] += 1
                    row["losses"] += 1
                elif game.is_final:
                    delta = outcome_delta(grade(pick, game), pick.is_double_down)
                    row["wins"] += delta.wins
                    row["losses"] += delta.losses
                    row["pushes"] += delta.pushes
                else:
                    row["pending"] += 1

            row["win_percentage"] = round(win_percentage(row["wins"], row["losses"]), 1)

            entry = db.session.get(UserLedgerEntry, user_id)
            row["username"] = entry.username if entry else None
            row["all_time"] = entry.counters_dict() if entry else None
            rows.append(row)

        rows.sort(key=standings_sort_key)
        for rank, row in enumerate(rows, start=1):
            row["rank"] = rank

        return {
            "session_id": session.id,
            "date": session.date.isoformat(),
            "kind": session.kind,
            "status": session.status,
            "generated_at": datetime.now(timezone.utc).isoformat(),
            "standings": rows,
        }


standings_service = StandingsService()
