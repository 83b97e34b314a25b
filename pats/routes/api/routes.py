from functools import wraps

from flask import jsonify, request

from pats import limiter
from pats.errors import ValidationError
from pats.routes.api import bp
from pats.services.grading import grading_engine
from pats.services.ledger_service import ledger_service
from pats.services.session_manager import session_manager
from pats.services.standings import standings_service


def add_security_headers(f):
    """Add security headers to API responses"""

    @wraps(f)
    def decorated_function(*args, **kwargs):
        response = f(*args, **kwargs)
        if isinstance(response, tuple):
            target = response[0]
        else:
            target = response
        if hasattr(target, "headers"):
            target.headers["Cache-Control"] = (
                "no-store, no-cache, must-revalidate, max-age=0"
            )
        return response

    return decorated_function


def get_json_body():
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def require(data, *names):
    missing = [name for name in names if data.get(name) is None]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")


def parse_bool(value):
    if isinstance(value, str):
        return value.lower() in ("1", "true", "yes")
    return bool(value)


# ----------------------------------------------------------------------
# Sessions
# ----------------------------------------------------------------------


@bp.route("/sessions", methods=["POST"])
@limiter.limit("30 per hour")
def create_session():
    """Open a new session from an ingestion feed"""
    data = get_json_body()
    require(data, "games")

    session = session_manager.create_session(
        data["games"],
        participants=data.get("participants"),
        kind=data.get("kind", "global"),
        owner_id=data.get("owner_id"),
        session_date=data.get("date"),
        season_ref=data.get("season_ref"),
    )
    return jsonify(session.to_dict()), 201


@bp.route("/sessions/active")
@add_security_headers
def active_session():
    """Get the active session (global first unless a kind is given)"""
    session = session_manager.get_active_session(
        request.args.get("kind"), request.args.get("owner_id")
    )
    if session is None:
        return jsonify({"error": "No active session"}), 404
    return jsonify(session.to_dict(include_picks=True))


@bp.route("/sessions/history")
def session_history():
    limit = request.args.get("limit", type=int)
    return jsonify([session.to_dict() for session in session_manager.get_history(limit)])


@bp.route("/sessions/<kind_or_id>")
@add_security_headers
def get_session(kind_or_id):
    session = session_manager.get_session(kind_or_id)
    return jsonify(session.to_dict(include_picks=True))


@bp.route("/sessions/<int:session_id>/picks", methods=["POST"])
@limiter.limit("60 per minute")
def record_pick(session_id):
    """Record or replace a pick"""
    data = get_json_body()
    require(data, "user_id", "game_id", "side")

    pick = session_manager.record_pick(
        session_id,
        data["user_id"],
        data["game_id"],
        data["side"],
        is_double_down=parse_bool(data.get("double_down", False)),
        username=data.get("username"),
    )
    return jsonify(pick.to_dict()), 201


@bp.route("/sessions/<int:session_id>/picks/<user_id>")
@add_security_headers
def user_picks(session_id, user_id):
    picks = session_manager.get_user_picks(session_id, user_id)
    return jsonify([pick.to_dict() for pick in picks])


@bp.route("/sessions/<int:session_id>/games/<game_id>/result", methods=["POST"])
def apply_result(session_id, game_id):
    """Feed a live or final score update for one game"""
    data = get_json_body()
    require(data, "home_score", "away_score")

    try:
        home_score = int(data["home_score"])
        away_score = int(data["away_score"])
    except (TypeError, ValueError):
        raise ValidationError("Scores must be integers")

    result = grading_engine.apply_result(
        session_id,
        game_id,
        home_score,
        away_score,
        status=data.get("status", "final"),
        allow_correction=parse_bool(data.get("allow_correction", True)),
    )
    return jsonify({"session_id": session_id, "game_id": game_id, "result": result.value})


@bp.route("/sessions/<int:session_id>/close", methods=["POST"])
def close_session(session_id):
    data = get_json_body()
    closed = session_manager.close_session(
        session_id, fallback_results=data.get("fallback_results")
    )
    return jsonify({"session_id": session_id, "closed_results": closed})


@bp.route("/sessions/reopen", methods=["POST"])
@bp.route("/sessions/<int:session_id>/reopen", methods=["POST"])
def reopen_session(session_id=None):
    """Reopen a closed session, the most recent one when no id is given"""
    session = session_manager.reopen_session(session_id)
    return jsonify(session.to_dict())


@bp.route("/sessions/<int:session_id>/void", methods=["POST"])
def void_session(session_id):
    data = get_json_body()
    return jsonify(session_manager.void_session(session_id, reason=data.get("reason")))


@bp.route("/sessions/<int:session_id>/spreads", methods=["POST"])
def refresh_spreads(session_id):
    data = get_json_body()
    require(data, "games")
    changes = session_manager.refresh_spreads(session_id, data["games"])
    return jsonify({"session_id": session_id, "changes": changes})


@bp.route("/sessions/<int:session_id>/standings")
@add_security_headers
def standings(session_id):
    refresh = parse_bool(request.args.get("refresh", "0"))
    return jsonify(standings_service.get_standings(session_id, force_refresh=refresh))


# ----------------------------------------------------------------------
# Ledger
# ----------------------------------------------------------------------


@bp.route("/leaderboard")
def leaderboard():
    month = request.args.get("month")
    return jsonify({"month": month, "leaderboard": ledger_service.get_leaderboard(month)})


@bp.route("/users", methods=["POST"])
def add_user():
    data = get_json_body()
    require(data, "user_id")
    entry = ledger_service.add_user(
        data["user_id"],
        username=data.get("username"),
        wins=data.get("wins", 0),
        losses=data.get("losses", 0),
        pushes=data.get("pushes", 0),
    )
    return jsonify(entry.to_dict()), 201


@bp.route("/users/<user_id>")
def user_stats(user_id):
    return jsonify(ledger_service.get_user_stats(user_id, request.args.get("month")))


@bp.route("/users/<user_id>", methods=["PATCH"])
def edit_user(user_id):
    data = get_json_body()
    month = data.pop("month", None)
    month_key = data.pop("month_key", None) or month
    data.pop("user_id", None)
    entry = ledger_service.edit_user(user_id, month_key=month_key, **data)
    return jsonify(entry.to_dict(month_key))


@bp.route("/users/<user_id>", methods=["DELETE"])
def delete_user(user_id):
    ledger_service.delete_user(user_id)
    return jsonify({"success": True, "user_id": user_id})
