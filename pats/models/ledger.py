from datetime import datetime, timezone

from pats import db
from pats.utils.scoring import win_percentage

# Fields an administrator may set directly
EDITABLE_FIELDS = (
    "total_wins",
    "total_losses",
    "total_pushes",
    "sessions_played",
    "double_down_wins",
    "double_down_losses",
    "double_down_pushes",
    "double_downs_used",
)


class LedgerCountersMixin:
    """Counters shared by the all-time entry and its monthly buckets"""

    total_wins = db.Column(db.Integer, default=0, nullable=False)
    total_losses = db.Column(db.Integer, default=0, nullable=False)
    total_pushes = db.Column(db.Integer, default=0, nullable=False)
    sessions_played = db.Column(db.Integer, default=0, nullable=False)
    double_down_wins = db.Column(db.Integer, default=0, nullable=False)
    double_down_losses = db.Column(db.Integer, default=0, nullable=False)
    double_down_pushes = db.Column(db.Integer, default=0, nullable=False)
    double_downs_used = db.Column(db.Integer, default=0, nullable=False)

    def _zero_counters(self):
        for name in EDITABLE_FIELDS:
            if getattr(self, name) is None:
                setattr(self, name, 0)

    def apply_delta(self, delta, sign=1):
        """Add (sign=1) or subtract (sign=-1) a StatDelta"""
        self.total_wins += sign * delta.wins
        self.total_losses += sign * delta.losses
        self.total_pushes += sign * delta.pushes
        self.double_down_wins += sign * delta.double_down_wins
        self.double_down_losses += sign * delta.double_down_losses
        self.double_down_pushes += sign * delta.double_down_pushes

    def record_session(self, used_double_down, sign=1):
        self.sessions_played += sign
        if used_double_down:
            self.double_downs_used += sign

    @property
    def win_percentage(self):
        return win_percentage(self.total_wins, self.total_losses)

    def counters_dict(self):
        data = {name: getattr(self, name) for name in EDITABLE_FIELDS}
        data["win_percentage"] = round(self.win_percentage, 1)
        return data


class UserLedgerEntry(LedgerCountersMixin, db.Model):
    """Durable all-time statistics for one user"""

    __tablename__ = "ledger_entries"

    user_id = db.Column(db.String(64), primary_key=True)
    username = db.Column(db.String(100))

    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    monthly = db.relationship(
        "MonthlyLedgerEntry",
        backref="entry",
        lazy="dynamic",
        cascade="all, delete-orphan",
    )

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self._zero_counters()

    def __repr__(self):
        return f"<UserLedgerEntry {self.user_id} {self.total_wins}-{self.total_losses}-{self.total_pushes}>"

    def get_month(self, month_key):
        return self.monthly.filter_by(month_key=month_key).first()

    def to_dict(self, month_key=None):
        data = {"user_id": self.user_id, "username": self.username}
        data.update(self.counters_dict())
        if month_key is not None:
            bucket = self.get_month(month_key)
            data["month_key"] = month_key
            data["monthly"] = bucket.counters_dict() if bucket else None
        return data


class MonthlyLedgerEntry(LedgerCountersMixin, db.Model):
    """One user's statistics for a single month, keyed by the session date"""

    __tablename__ = "monthly_ledger_entries"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.String(64), db.ForeignKey("ledger_entries.user_id"), nullable=False
    )
    month_key = db.Column(db.String(7), nullable=False)  # YYYY-MM

    __table_args__ = (
        db.UniqueConstraint("user_id", "month_key", name="unique_user_month"),
        db.Index("idx_monthly_month", "month_key"),
    )

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self._zero_counters()

    def __repr__(self):
        return f"<MonthlyLedgerEntry {self.user_id} {self.month_key}>"


def ensure_ledger_entry(user_id, username=None):
    """Get the user's ledger entry, creating an empty one on first use"""
    entry = db.session.get(UserLedgerEntry, user_id)
    if entry is None:
        entry = UserLedgerEntry(user_id=user_id, username=username)
        db.session.add(entry)
        db.session.flush()
    elif username and entry.username != username:
        entry.username = username
    return entry


def ensure_monthly_bucket(entry, month_key):
    """Get the entry's bucket for a month, creating an empty one on first use"""
    bucket = (
        db.session.query(MonthlyLedgerEntry)
        .filter_by(user_id=entry.user_id, month_key=month_key)
        .first()
    )
    if bucket is None:
        bucket = MonthlyLedgerEntry(user_id=entry.user_id, month_key=month_key)
        db.session.add(bucket)
        db.session.flush()
    return bucket
