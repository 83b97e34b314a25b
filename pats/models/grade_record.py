from datetime import datetime, timezone

from pats import db
from pats.utils.scoring import StatDelta


class GradeRecord(db.Model):
    """Ledger delta the engine applied for one participant on one game

    Reverting a game subtracts exactly these rows, so a correction never
    depends on re-deriving what was applied earlier.
    """

    __tablename__ = "grade_records"

    id = db.Column(db.Integer, primary_key=True)

    session_id = db.Column(
        db.Integer, db.ForeignKey("pats_sessions.id"), nullable=False
    )
    game_id = db.Column(db.Integer, db.ForeignKey("session_games.id"), nullable=False)
    user_id = db.Column(db.String(64), nullable=False)
    month_key = db.Column(db.String(7), nullable=False)

    outcome = db.Column(db.String(10), nullable=False)
    is_double_down = db.Column(db.Boolean, default=False, nullable=False)

    wins = db.Column(db.Integer, default=0, nullable=False)
    losses = db.Column(db.Integer, default=0, nullable=False)
    pushes = db.Column(db.Integer, default=0, nullable=False)
    missed_picks = db.Column(db.Integer, default=0, nullable=False)
    double_down_wins = db.Column(db.Integer, default=0, nullable=False)
    double_down_losses = db.Column(db.Integer, default=0, nullable=False)
    double_down_pushes = db.Column(db.Integer, default=0, nullable=False)

    # Applied while closing the session rather than from a live score tick
    applied_at_close = db.Column(db.Boolean, default=False, nullable=False)

    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    game = db.relationship(
        "Game", backref=db.backref("grade_records", cascade="all, delete-orphan")
    )

    __table_args__ = (
        db.UniqueConstraint("game_id", "user_id", name="unique_game_user_grade"),
        db.Index("idx_grade_session_user", "session_id", "user_id"),
    )

    def __repr__(self):
        return f"<GradeRecord game={self.game_id} user={self.user_id} {self.outcome}>"

    @staticmethod
    def from_delta(session, game, user_id, outcome, delta, is_double_down, applied_at_close):
        return GradeRecord(
            session_id=session.id,
            game_id=game.id,
            user_id=user_id,
            month_key=session.month_key,
            outcome=outcome.value,
            is_double_down=is_double_down,
            applied_at_close=applied_at_close,
            **delta.to_dict(),
        )

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
