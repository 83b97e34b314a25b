from datetime import datetime, timezone

from pats import db


class Pick(db.Model):
    __tablename__ = "picks"

    id = db.Column(db.Integer, primary_key=True)

    # Pick identification
    session_id = db.Column(
        db.Integer, db.ForeignKey("pats_sessions.id"), nullable=False
    )
    game_id = db.Column(db.Integer, db.ForeignKey("session_games.id"), nullable=False)
    user_id = db.Column(db.String(64), nullable=False)

    # Pick details
    side = db.Column(db.String(10), nullable=False)  # "home" or "away"
    spread_at_pick = db.Column(db.Float, nullable=False, default=0.0)
    is_double_down = db.Column(db.Boolean, default=False, nullable=False)

    submitted_at = db.Column(
        db.DateTime, default=lambda: datetime.now(timezone.utc), nullable=False
    )

    __table_args__ = (
        db.UniqueConstraint(
            "session_id", "user_id", "game_id", name="unique_user_session_game_pick"
        ),
        db.Index("idx_pick_session_user", "session_id", "user_id"),
        db.Index("idx_pick_game", "game_id"),
    )

    def __repr__(self):
        return f"<Pick user_id={self.user_id} game_id={self.game_id} side={self.side}>"

    def to_dict(self):
        """Convert pick to dictionary for API responses"""
        return {
            "user_id": self.user_id,
            "game_id": self.game.external_id if self.game else None,
            "side": self.side,
            "spread_at_pick": self.spread_at_pick,
            "is_double_down": self.is_double_down,
            "submitted_at": (
                self.submitted_at.isoformat() if self.submitted_at else None
            ),
        }
