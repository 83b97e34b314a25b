from pats import db
from pats.models import UserLedgerEntry
from tests.conftest import AFTER_KICKOFF, NOW


def rows_by_user(standings):
    return {row["user_id"]: row for row in standings["standings"]}


def test_standings_combine_final_pending_and_missed(session_factory, manager, engine, standings):
    session = session_factory(participants=["alice", "bob", "carol", "dave"])
    manager.record_pick(session.id, "alice", "g1", "home", now=NOW)
    manager.record_pick(session.id, "alice", "g2", "home", now=NOW)
    manager.record_pick(session.id, "bob", "g1", "away", is_double_down=True, now=NOW)
    manager.record_pick(session.id, "carol", "g3", "away", now=NOW)
    engine.apply_result(session.id, "g1", 28, 14)

    data = standings.get_standings(session.id, force_refresh=True, now=AFTER_KICKOFF)
    rows = rows_by_user(data)

    assert rows["alice"]["wins"] == 1
    assert rows["alice"]["losses"] == 1
    assert rows["alice"]["pending"] == 1
    assert rows["alice"]["missed"] == 1
    assert rows["alice"]["win_percentage"] == 50.0

    assert rows["bob"]["losses"] == 4
    assert rows["bob"]["missed"] == 2
    assert rows["bob"]["double_down"] == "g1"

    assert rows["carol"]["pending"] == 1
    assert rows["carol"]["missed"] == 2

    assert rows["dave"]["missed"] == 3
    assert rows["dave"]["picks_made"] == 0

    assert data["standings"][0]["user_id"] == "alice"
    assert data["standings"][0]["rank"] == 1


def test_missed_losses_in_standings_are_never_persisted(session_factory, engine, standings):
    session = session_factory(participants=["dave"])
    engine.apply_result(session.id, "g1", 10, 0)

    rows = rows_by_user(standings.get_standings(session.id, now=AFTER_KICKOFF))

    assert rows["dave"]["losses"] == 3
    db.session.expire_all()
    assert db.session.get(UserLedgerEntry, "dave").total_losses == 1


def test_participants_without_decided_picks_sort_last_by_activity(
    session_factory, manager, standings
):
    session = session_factory(participants=["bob", "carol", "alice", "erin"])
    manager.record_pick(session.id, "carol", "g3", "home", now=NOW)
    manager.record_pick(session.id, "alice", "g2", "home", now=NOW)
    manager.record_pick(session.id, "alice", "g3", "home", now=NOW)
    for game_id in ("g1", "g2", "g3"):
        manager.record_pick(session.id, "erin", game_id, "away", now=NOW)

    data = standings.get_standings(session.id, now=NOW)

    assert [row["user_id"] for row in data["standings"]] == ["erin", "alice", "carol", "bob"]
    assert all(row["wins"] + row["losses"] == 0 for row in data["standings"])


def test_ties_on_percentage_break_on_wins(session_factory, manager, engine, standings):
    session = session_factory(participants=["alice", "bob"])
    manager.record_pick(session.id, "alice", "g1", "home", now=NOW)
    manager.record_pick(session.id, "bob", "g1", "home", is_double_down=True, now=NOW)
    engine.apply_result(session.id, "g1", 30, 0)

    data = standings.get_standings(session.id, now=NOW)

    assert [row["user_id"] for row in data["standings"]] == ["bob", "alice"]
    assert data["standings"][0]["wins"] == 2


def test_standings_are_cached_until_invalidated(session_factory, manager, standings):
    session = session_factory(participants=["alice"])
    first = standings.get_standings(session.id, now=NOW)
    assert rows_by_user(first)["alice"]["picks_made"] == 0

    # Writes outside the services do not invalidate the cache
    session.add_participant("zed")
    db.session.commit()
    assert "zed" not in rows_by_user(standings.get_standings(session.id, now=NOW))
    assert "zed" in rows_by_user(
        standings.get_standings(session.id, force_refresh=True, now=NOW)
    )

    manager.record_pick(session.id, "alice", "g1", "home", now=NOW)
    assert rows_by_user(standings.get_standings(session.id, now=NOW))["alice"]["picks_made"] == 1
