from datetime import datetime, timezone

from pats import db
from pats.utils.scoring import StatDelta


class ClosedResult(db.Model):
    """Frozen per-participant totals written once when a session closes

    Reopening subtracts these rows from the ledger and deletes them; they
    are never recomputed otherwise.
    """

    __tablename__ = "closed_results"

    id = db.Column(db.Integer, primary_key=True)

    session_id = db.Column(
        db.Integer, db.ForeignKey("pats_sessions.id"), nullable=False
    )
    user_id = db.Column(db.String(64), nullable=False)
    month_key = db.Column(db.String(7), nullable=False)

    wins = db.Column(db.Integer, default=0, nullable=False)
    losses = db.Column(db.Integer, default=0, nullable=False)
    pushes = db.Column(db.Integer, default=0, nullable=False)
    missed_picks = db.Column(db.Integer, default=0, nullable=False)
    double_down_wins = db.Column(db.Integer, default=0, nullable=False)
    double_down_losses = db.Column(db.Integer, default=0, nullable=False)
    double_down_pushes = db.Column(db.Integer, default=0, nullable=False)
    used_double_down = db.Column(db.Boolean, default=False, nullable=False)

    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.UniqueConstraint("session_id", "user_id", name="unique_closed_result"),
    )

    def __repr__(self):
        return f"<ClosedResult session={self.session_id} user={self.user_id} {self.wins}-{self.losses}-{self.pushes}>"

    @property
    def delta(self):
        return StatDelta(
            wins=self.wins,
            losses=self.losses,
            pushes=self.pushes,
            missed_picks=self.missed_picks,
            double_down_wins=self.double_down_wins,
            double_down_losses=self.double_down_losses,
            double_down_pushes=self.double_down_pushes,
        )

    def to_dict(self):
        return {
            "wins": self.wins,
            "losses": self.losses,
            "pushes": self.pushes,
            "missed_picks": self.missed_picks,
            "double_down_wins": self.double_down_wins,
            "double_down_losses": self.double_down_losses,
            "double_down_pushes": self.double_down_pushes,
            "used_double_down": self.used_double_down,
        }
