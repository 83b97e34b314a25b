"""
Administrative access to the per-user ledger.

Direct edits set absolute counter values and bypass grading entirely;
they exist for corrections an administrator makes by hand.
"""

import logging

from pats import db
from pats.errors import ConflictError, NotFoundError, ValidationError
from pats.models.ledger import (
    EDITABLE_FIELDS,
    MonthlyLedgerEntry,
    UserLedgerEntry,
    ensure_ledger_entry,
    ensure_monthly_bucket,
)
from pats.services.ledger_store import ledger_store
from pats.utils.cache_utils import (
    cached_view,
    invalidate_leaderboard_cache,
    leaderboard_cache_key,
)

logger = logging.getLogger(__name__)


def _validate_month_key(month_key):
    if month_key is None:
        return None
    parts = str(month_key).split("-")
    if (
        len(parts) != 2
        or len(parts[0]) != 4
        or not all(part.isdigit() for part in parts)
        or not 1 <= int(parts[1]) <= 12
    ):
        raise ValidationError(f"Invalid month '{month_key}', expected YYYY-MM")
    return f"{parts[0]}-{int(parts[1]):02d}"


def _leaderboard_sort_key(row):
    return (-row["win_percentage"], -row["total_wins"])


class LedgerService:
    def __init__(self, store=None):
        self.store = store or ledger_store

    def get_entry_or_404(self, user_id):
        entry = db.session.get(UserLedgerEntry, str(user_id))
        if entry is None:
            raise NotFoundError(f"User {user_id} has no ledger entry")
        return entry

    def add_user(self, user_id, username=None, wins=0, losses=0, pushes=0):
        """Create a ledger entry with optional starting totals"""
        user_id = str(user_id)
        starting = {"total_wins": wins, "total_losses": losses, "total_pushes": pushes}
        self._validate_fields(starting)

        with self.store.transaction("add user"):
            if db.session.get(UserLedgerEntry, user_id) is not None:
                raise ConflictError(f"User {user_id} already exists in the ledger")
            entry = ensure_ledger_entry(user_id, username)
            for name, value in starting.items():
                setattr(entry, name, int(value))

        invalidate_leaderboard_cache()
        logger.info(f"Added ledger user {user_id} ({wins}-{losses}-{pushes})")
        return entry

    def edit_user(self, user_id, month_key=None, **fields):
        """
        Set absolute counter values on a user's all-time entry, or on one
        monthly bucket when ``month_key`` is given.
        """
        if not fields:
            raise ValidationError("No fields to update")
        unknown = sorted(set(fields) - set(EDITABLE_FIELDS) - {"username"})
        if unknown:
            raise ValidationError(f"Unknown ledger fields: {', '.join(unknown)}")
        month_key = _validate_month_key(month_key)

        username = fields.pop("username", None)
        self._validate_fields(fields)

        with self.store.transaction("edit user"):
            entry = self.get_entry_or_404(user_id)
            target = entry if month_key is None else ensure_monthly_bucket(entry, month_key)
            for name, value in fields.items():
                setattr(target, name, int(value))
            if username:
                entry.username = username

        invalidate_leaderboard_cache(month_key)
        logger.info(
            f"Edited ledger user {user_id}"
            + (f" month {month_key}" if month_key else "")
            + f": {fields}"
        )
        return entry

    def delete_user(self, user_id):
        with self.store.transaction("delete user"):
            entry = self.get_entry_or_404(user_id)
            months = [bucket.month_key for bucket in entry.monthly]
            db.session.delete(entry)

        invalidate_leaderboard_cache()
        for month_key in months:
            invalidate_leaderboard_cache(month_key)
        logger.info(f"Deleted ledger user {user_id}")

    def get_user_stats(self, user_id, month_key=None):
        month_key = _validate_month_key(month_key)
        return self.get_entry_or_404(user_id).to_dict(month_key)

    def get_leaderboard(self, month_key=None, force_refresh=False):
        """All-time (or one month's) ledger rows, best first"""
        month_key = _validate_month_key(month_key)
        return cached_view(
            leaderboard_cache_key(month_key),
            lambda: self._build_leaderboard(month_key),
            "LEADERBOARD_CACHE_TIMEOUT",
            force_refresh=force_refresh,
        )

    def _build_leaderboard(self, month_key):
        if month_key is None:
            rows = [
                dict(entry.counters_dict(), user_id=entry.user_id, username=entry.username)
                for entry in UserLedgerEntry.query.all()
            ]
        else:
            rows = [
                dict(
                    bucket.counters_dict(),
                    user_id=bucket.user_id,
                    username=bucket.entry.username,
                )
                for bucket in MonthlyLedgerEntry.query.filter_by(month_key=month_key)
            ]

        rows.sort(key=_leaderboard_sort_key)
        for rank, row in enumerate(rows, start=1):
            row["rank"] = rank
        return rows

    @staticmethod
    def _validate_fields(fields):
        for name, value in fields.items():
            try:
                value = int(value)
            except (TypeError, ValueError):
                raise ValidationError(f"{name} must be an integer")
            if value < 0:
                raise ValidationError(f"{name} cannot be negative")


ledger_service = LedgerService()
