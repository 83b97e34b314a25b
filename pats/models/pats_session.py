from datetime import datetime, timezone

from pats import db
from pats.utils.timezone_utils import month_key_for

STATUS_ACTIVE = "active"
STATUS_CLOSED = "closed"

KIND_GLOBAL = "global"
KIND_PERSONAL = "personal"
SESSION_KINDS = (KIND_GLOBAL, KIND_PERSONAL)


class PATSSession(db.Model):
    """One day's slate of games open for picks

    Active and closed (history) sessions share this table; ``status`` tells
    them apart.
    """

    __tablename__ = "pats_sessions"

    id = db.Column(db.Integer, primary_key=True)
    date = db.Column(db.Date, nullable=False)

    kind = db.Column(db.String(20), nullable=False, default=KIND_GLOBAL)
    owner_id = db.Column(db.String(64))  # Personal sessions only
    season_ref = db.Column(db.String(64))

    status = db.Column(db.String(20), nullable=False, default=STATUS_ACTIVE)
    participants = db.Column(db.JSON, nullable=False, default=list)

    # Timestamps
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    closed_at = db.Column(db.DateTime)
    reopened_at = db.Column(db.DateTime)

    # Relationships
    games = db.relationship(
        "Game",
        backref="session",
        order_by="Game.commence_time",
        cascade="all, delete-orphan",
    )
    picks = db.relationship(
        "Pick", backref="session", lazy="dynamic", cascade="all, delete-orphan"
    )
    grade_records = db.relationship(
        "GradeRecord", backref="session", lazy="dynamic", cascade="all, delete-orphan"
    )
    closed_results = db.relationship(
        "ClosedResult", backref="session", lazy="dynamic", cascade="all, delete-orphan"
    )

    __table_args__ = (
        db.Index("idx_session_status_kind", "status", "kind"),
        db.Index("idx_session_owner", "owner_id"),
        db.Index("idx_session_date", "date"),
    )

    def __repr__(self):
        return f"<PATSSession {self.id} {self.kind} {self.date} {self.status}>"

    @property
    def is_active(self):
        return self.status == STATUS_ACTIVE

    @property
    def is_closed(self):
        return self.status == STATUS_CLOSED

    @property
    def month_key(self):
        """Monthly ledger bucket this session contributes to"""
        return month_key_for(self.date)

    @property
    def participant_ids(self):
        return list(self.participants or [])

    def add_participant(self, user_id):
        """Add a participant, returns True if they were new"""
        if user_id in self.participant_ids:
            return False
        # Reassign so the JSON column is flagged dirty
        self.participants = self.participant_ids + [user_id]
        return True

    def get_game(self, external_id):
        for game in self.games:
            if game.external_id == str(external_id):
                return game
        return None

    def picks_by_user(self):
        """Map user id -> {game row id: Pick}"""
        by_user = {}
        for pick in self.picks.all():
            by_user.setdefault(pick.user_id, {})[pick.game_id] = pick
        return by_user

    @property
    def all_games_decided(self):
        return bool(self.games) and all(game.graded for game in self.games)

    @staticmethod
    def get_active(kind=None, owner_id=None):
        """Get the active session of a kind; global wins when no kind is given"""
        if kind is None:
            session = PATSSession.get_active(KIND_GLOBAL)
            if session:
                return session
            return PATSSession.get_active(KIND_PERSONAL, owner_id)

        query = PATSSession.query.filter_by(status=STATUS_ACTIVE, kind=kind)
        if owner_id is not None:
            query = query.filter_by(owner_id=owner_id)
        return query.order_by(PATSSession.created_at.desc()).first()

    @staticmethod
    def get_history(limit=None):
        query = PATSSession.query.filter_by(status=STATUS_CLOSED).order_by(
            PATSSession.closed_at.desc(), PATSSession.id.desc()
        )
        if limit:
            query = query.limit(limit)
        return query.all()

    def to_dict(self, include_picks=False):
        """Convert session to dictionary for API responses"""
        data = {
            "id": self.id,
            "date": self.date.isoformat(),
            "kind": self.kind,
            "owner_id": self.owner_id,
            "season_ref": self.season_ref,
            "status": self.status,
            "participants": self.participant_ids,
            "games": [game.to_dict() for game in self.games],
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "closed_at": self.closed_at.isoformat() if self.closed_at else None,
        }

        if include_picks:
            picks = {}
            for pick in self.picks.all():
                picks.setdefault(pick.user_id, []).append(pick.to_dict())
            data["picks"] = picks

        if self.is_closed:
            data["closed_results"] = {
                result.user_id: result.to_dict() for result in self.closed_results
            }

        return data
