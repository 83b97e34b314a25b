import pytest

from pats import db
from pats.errors import ConflictError, NotFoundError, ValidationError
from pats.models import MonthlyLedgerEntry, UserLedgerEntry


def test_add_user_with_starting_totals(ledger):
    ledger.add_user("alice", username="Alice", wins=4, losses=1, pushes=2)

    stats = ledger.get_user_stats("alice")
    assert stats["username"] == "Alice"
    assert (stats["total_wins"], stats["total_losses"], stats["total_pushes"]) == (4, 1, 2)
    assert stats["win_percentage"] == 80.0


def test_add_existing_user_conflicts(ledger):
    ledger.add_user("alice")

    with pytest.raises(ConflictError):
        ledger.add_user("alice", wins=10)
    assert ledger.get_user_stats("alice")["total_wins"] == 0


def test_edit_user_sets_absolute_values(ledger):
    ledger.add_user("alice", wins=4)

    ledger.edit_user("alice", total_wins=9, double_downs_used="2")

    stats = ledger.get_user_stats("alice")
    assert stats["total_wins"] == 9
    assert stats["double_downs_used"] == 2


def test_edit_monthly_bucket(ledger):
    ledger.add_user("alice", wins=4)

    ledger.edit_user("alice", month_key="2025-11", total_wins=3)

    stats = ledger.get_user_stats("alice", "2025-11")
    assert stats["total_wins"] == 4
    assert stats["monthly"]["total_wins"] == 3
    assert ledger.get_user_stats("alice", "2025-12")["monthly"] is None


@pytest.mark.parametrize(
    "fields",
    [
        {},
        {"total_wins": -1},
        {"total_wins": "many"},
        {"favourite_team": "Bills"},
    ],
)
def test_edit_user_validation(ledger, fields):
    ledger.add_user("alice", wins=4)

    with pytest.raises(ValidationError):
        ledger.edit_user("alice", **fields)
    assert ledger.get_user_stats("alice")["total_wins"] == 4


def test_edit_rejects_bad_month(ledger):
    ledger.add_user("alice")

    with pytest.raises(ValidationError):
        ledger.edit_user("alice", month_key="2025-13", total_wins=1)


def test_missing_user_is_not_found(ledger):
    with pytest.raises(NotFoundError):
        ledger.edit_user("ghost", total_wins=1)
    with pytest.raises(NotFoundError):
        ledger.get_user_stats("ghost")
    with pytest.raises(NotFoundError):
        ledger.delete_user("ghost")


def test_delete_user_removes_monthly_buckets(ledger):
    ledger.add_user("alice")
    ledger.edit_user("alice", month_key="2025-10", total_wins=1)

    ledger.delete_user("alice")

    assert db.session.get(UserLedgerEntry, "alice") is None
    assert MonthlyLedgerEntry.query.filter_by(user_id="alice").count() == 0


def test_leaderboard_orders_by_percentage_then_wins(ledger):
    ledger.add_user("alice", wins=3, losses=1)
    ledger.add_user("bob", wins=6, losses=2)
    ledger.add_user("carol", wins=1, losses=0)
    ledger.add_user("dave", wins=0, losses=0, pushes=5)

    board = ledger.get_leaderboard()

    assert [row["user_id"] for row in board] == ["carol", "bob", "alice", "dave"]
    assert [row["rank"] for row in board] == [1, 2, 3, 4]


def test_monthly_leaderboard(ledger):
    ledger.add_user("alice", wins=10)
    ledger.add_user("bob")
    ledger.edit_user("bob", month_key="2025-10", total_wins=2, total_losses=1)

    board = ledger.get_leaderboard("2025-10")

    assert [row["user_id"] for row in board] == ["bob"]
    assert board[0]["total_wins"] == 2


def test_leaderboard_cache_is_invalidated_by_edits(ledger):
    ledger.add_user("alice", wins=1, losses=1)
    ledger.add_user("bob", wins=1, losses=3)
    assert ledger.get_leaderboard()[0]["user_id"] == "alice"

    ledger.edit_user("bob", total_losses=0)

    assert ledger.get_leaderboard()[0]["user_id"] == "bob"
