import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from pats import db
from pats.errors import NotFoundError, PersistenceError, ValidationError
from pats.models import GradeRecord, UserLedgerEntry
from pats.services.grading import GradeStatus
from tests.conftest import NOW, make_game

MONTH = "2025-10"


def ledger_state(*user_ids):
    db.session.expire_all()
    return {
        user_id: db.session.get(UserLedgerEntry, user_id).to_dict(MONTH)
        for user_id in user_ids
    }


def test_live_updates_never_touch_ledger(session_factory, engine):
    session = session_factory()
    before = ledger_state("alice", "bob")

    for _ in range(3):
        assert engine.apply_result(session.id, "g1", 7, 3, status="live") == GradeStatus.LIVE_UPDATED

    assert ledger_state("alice", "bob") == before
    game = session.get_game("g1")
    assert game.is_live
    assert (game.home_score, game.away_score) == (7, 3)
    assert not game.graded


def test_live_update_after_final_is_ignored(session_factory, engine):
    session = session_factory()
    engine.apply_result(session.id, "g1", 21, 14)

    assert engine.apply_result(session.id, "g1", 24, 14, status="live") == GradeStatus.IGNORED
    assert session.get_game("g1").home_score == 21


def test_final_grades_picks_and_missed_participants(session_factory, manager, engine):
    session = session_factory(games=[make_game("g1", home_spread=-9)])
    manager.record_pick(session.id, "alice", "g1", "home", now=NOW)

    assert engine.apply_result(session.id, "g1", 110, 100) == GradeStatus.GRADED

    state = ledger_state("alice", "bob")
    assert state["alice"]["total_wins"] == 1
    assert state["alice"]["monthly"]["total_wins"] == 1
    assert state["bob"]["total_losses"] == 1
    assert state["bob"]["monthly"]["total_losses"] == 1
    assert GradeRecord.query.filter_by(user_id="bob").one().outcome == "missed"


def test_repeated_final_is_unchanged(session_factory, manager, engine):
    session = session_factory()
    manager.record_pick(session.id, "alice", "g1", "home", now=NOW)
    engine.apply_result(session.id, "g1", 30, 10)
    before = ledger_state("alice", "bob")

    assert engine.apply_result(session.id, "g1", 30, 10) == GradeStatus.UNCHANGED
    assert ledger_state("alice", "bob") == before
    assert GradeRecord.query.count() == 2


def _correction_scenario(manager, engine, session, results):
    manager.record_pick(session.id, "alice", "g1", "home", is_double_down=True, now=NOW)
    manager.record_pick(session.id, "bob", "g1", "away", now=NOW)
    for home, away in results:
        engine.apply_result(session.id, "g1", home, away)
    return ledger_state("alice", "bob")


def test_correction_matches_applying_only_the_corrected_result(app, session_factory, manager, engine):
    corrected = session_factory()
    state_after_correction = _correction_scenario(
        manager, engine, corrected, [(100, 90), (90, 100)]
    )
    manager.void_session(corrected.id)

    direct = session_factory()
    state_direct = _correction_scenario(manager, engine, direct, [(90, 100)])

    assert state_after_correction == state_direct
    assert state_direct["alice"]["total_losses"] == 2
    assert state_direct["alice"]["double_down_losses"] == 1
    assert state_direct["alice"]["total_wins"] == 0
    assert state_direct["bob"]["total_wins"] == 1


def test_correction_reports_status(session_factory, engine):
    session = session_factory()
    engine.apply_result(session.id, "g1", 100, 90)

    assert engine.apply_result(session.id, "g1", 90, 100) == GradeStatus.CORRECTION_APPLIED
    assert GradeRecord.query.filter_by(game_id=session.get_game("g1").id).count() == 2


def test_correction_can_be_rejected(session_factory, manager, engine):
    session = session_factory()
    manager.record_pick(session.id, "alice", "g1", "home", now=NOW)
    engine.apply_result(session.id, "g1", 100, 90)
    before = ledger_state("alice", "bob")

    result = engine.apply_result(session.id, "g1", 90, 100, allow_correction=False)

    assert result == GradeStatus.REJECTED
    assert ledger_state("alice", "bob") == before
    assert session.get_game("g1").home_score == 100


def test_double_down_push_counts_once(session_factory, manager, engine):
    session = session_factory(games=[make_game("g1", home_spread=-3)])
    manager.record_pick(session.id, "alice", "g1", "home", is_double_down=True, now=NOW)

    engine.apply_result(session.id, "g1", 13, 10)

    alice = ledger_state("alice")["alice"]
    assert alice["total_pushes"] == 1
    assert alice["double_down_pushes"] == 1
    assert alice["total_wins"] == 0


def test_double_down_win_counts_twice(session_factory, manager, engine):
    session = session_factory(games=[make_game("g1", home_spread=-3)])
    manager.record_pick(session.id, "alice", "g1", "home", is_double_down=True, now=NOW)

    engine.apply_result(session.id, "g1", 20, 10)

    alice = ledger_state("alice")["alice"]
    assert alice["total_wins"] == 2
    assert alice["double_down_wins"] == 1


def test_monthly_bucket_follows_session_date(manager, engine):
    session = manager.create_session(
        [make_game("g1")], ["alice"], session_date="2025-12-31"
    )
    manager.record_pick(session.id, "alice", "g1", "home", now=NOW)

    engine.apply_result(session.id, "g1", 30, 0)

    entry = db.session.get(UserLedgerEntry, "alice")
    assert entry.get_month("2025-12").total_wins == 1
    assert entry.get_month("2026-01") is None
    assert entry.get_month(MONTH) is None


def test_unknown_ids_are_rejected(session_factory, engine):
    session = session_factory()

    with pytest.raises(NotFoundError):
        engine.apply_result(session.id, "nope", 1, 0)
    with pytest.raises(NotFoundError):
        engine.apply_result(9999, "g1", 1, 0)
    with pytest.raises(ValidationError):
        engine.apply_result(session.id, "g1", 1, 0, status="halftime")


def test_final_on_closed_session_is_rejected(session_factory, manager, engine):
    session = session_factory()
    manager.close_session(session.id)

    with pytest.raises(ValidationError):
        engine.apply_result(session.id, "g1", 10, 0)


def test_failed_commit_leaves_ledger_untouched(session_factory, manager, engine, monkeypatch):
    session = session_factory()
    manager.record_pick(session.id, "alice", "g1", "home", now=NOW)
    before = ledger_state("alice", "bob")

    def failing_commit(self):
        raise OperationalError("COMMIT", {}, Exception("disk I/O error"))

    monkeypatch.setattr(Session, "commit", failing_commit)
    with pytest.raises(PersistenceError):
        engine.apply_result(session.id, "g1", 30, 10)
    monkeypatch.undo()

    assert ledger_state("alice", "bob") == before
    assert GradeRecord.query.count() == 0
    assert not session.get_game("g1").graded
    assert session.get_game("g1").result_status is None
