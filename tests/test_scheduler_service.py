from pats import db
from pats.models import PATSSession
from pats.services.scheduler_service import SchedulerService
from tests.conftest import make_feed


def test_auto_close_only_closes_fully_graded_sessions(app, manager, engine):
    decided = manager.create_session(make_feed(2), ["alice"], session_date="2025-10-05")
    undecided = manager.create_session(
        make_feed(2), kind="personal", owner_id="bob", session_date="2025-10-05"
    )
    for game_id in ("g1", "g2"):
        engine.apply_result(decided.id, game_id, 14, 10)
    engine.apply_result(undecided.id, "g1", 14, 10)

    service = SchedulerService(manager=manager)
    service.app = app
    closed = service.close_decided_sessions()

    assert closed == [decided.id]
    assert db.session.get(PATSSession, decided.id).is_closed
    assert db.session.get(PATSSession, undecided.id).is_active
    assert service.stats["sessions_closed"] == 1
    assert service.stats["successful_runs"] == 1


def test_scheduler_is_not_started_under_testing(app):
    service = SchedulerService(manager=object())
    service.init_app(app)

    status = service.get_status()
    assert status["is_running"] is False
    assert status["jobs"] == []
