from datetime import datetime, timezone

from pats import db

HOME = "home"
AWAY = "away"
SIDES = (HOME, AWAY)

RESULT_LIVE = "live"
RESULT_FINAL = "final"


def parse_commence_time(value):
    """Normalise a feed timestamp to a naive UTC datetime"""
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class Game(db.Model):
    """A game snapshotted into one session, with the spreads offered for it"""

    __tablename__ = "session_games"

    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(
        db.Integer, db.ForeignKey("pats_sessions.id"), nullable=False
    )

    # Ingestion id, the "game id" every caller uses
    external_id = db.Column(db.String(64), nullable=False)

    # Teams
    home_team = db.Column(db.String(100), nullable=False)
    away_team = db.Column(db.String(100), nullable=False)

    # Game timing (naive UTC)
    commence_time = db.Column(db.DateTime, nullable=False)

    # Spreads
    home_spread = db.Column(db.Float, default=0.0)
    away_spread = db.Column(db.Float, default=0.0)
    favored = db.Column(db.String(10))  # "home", "away" or None for pick'em

    # Result: None -> live -> final
    result_status = db.Column(db.String(10))
    home_score = db.Column(db.Integer)
    away_score = db.Column(db.Integer)
    winner = db.Column(db.String(10))  # "home", "away" or "push"

    # Set once the engine has applied this game's final to the ledger
    graded = db.Column(db.Boolean, default=False, nullable=False)
    graded_at_close = db.Column(db.Boolean, default=False, nullable=False)

    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    picks = db.relationship(
        "Pick", backref="game", lazy="dynamic", cascade="all, delete-orphan"
    )

    __table_args__ = (
        db.UniqueConstraint("session_id", "external_id", name="unique_session_game"),
        db.Index("idx_game_session", "session_id"),
        db.Index("idx_game_commence", "commence_time"),
    )

    def __repr__(self):
        return f"<Game {self.away_team} @ {self.home_team} session={self.session_id}>"

    @staticmethod
    def from_feed(data):
        """Build a game from an ingestion record"""
        home_spread = data.get("home_spread") or 0.0
        away_spread = data.get("away_spread")
        if away_spread is None:
            away_spread = -home_spread

        favored = data.get("favored")
        if favored is None and home_spread != away_spread:
            favored = HOME if home_spread < away_spread else AWAY

        return Game(
            external_id=str(data["id"]),
            home_team=data["home_team"],
            away_team=data["away_team"],
            commence_time=parse_commence_time(data["commence_time"]),
            home_spread=float(home_spread),
            away_spread=float(away_spread),
            favored=favored,
        )

    @property
    def is_final(self):
        return self.result_status == RESULT_FINAL

    @property
    def is_live(self):
        return self.result_status == RESULT_LIVE

    @property
    def status(self):
        """Get game status as string"""
        if self.is_final:
            return "completed"
        if self.is_live or self.has_started():
            return "in_progress"
        return "scheduled"

    def spread_for(self, side):
        return self.home_spread if side == HOME else self.away_spread

    def has_started(self, now=None):
        """Check if game has started"""
        if not self.commence_time:
            return False
        now = now or datetime.now(timezone.utc)
        if now.tzinfo is not None:
            now = now.astimezone(timezone.utc).replace(tzinfo=None)
        return now >= self.commence_time

    def is_pickable(self, now=None):
        """Check if game is available for picks (hasn't started, no result yet)"""
        return not self.has_started(now) and not self.is_final and not self.is_live

    def set_live(self, home_score, away_score):
        self.result_status = RESULT_LIVE
        self.home_score = home_score
        self.away_score = away_score
        self.winner = None

    def set_final(self, home_score, away_score):
        self.result_status = RESULT_FINAL
        self.home_score = home_score
        self.away_score = away_score
        if home_score > away_score:
            self.winner = HOME
        elif away_score > home_score:
            self.winner = AWAY
        else:
            self.winner = "push"

    def has_scores(self, home_score, away_score):
        return self.home_score == home_score and self.away_score == away_score

    def to_dict(self):
        """Convert game to dictionary for API responses"""
        return {
            "id": self.external_id,
            "home_team": self.home_team,
            "away_team": self.away_team,
            "commence_time": (
                self.commence_time.isoformat() + "Z" if self.commence_time else None
            ),
            "home_spread": self.home_spread,
            "away_spread": self.away_spread,
            "favored": self.favored,
            "result": (
                {
                    "status": self.result_status,
                    "home_score": self.home_score,
                    "away_score": self.away_score,
                    "winner": self.winner,
                }
                if self.result_status
                else None
            ),
            "graded": self.graded,
            "status": self.status,
        }
