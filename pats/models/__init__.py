from pats import db  # noqa: F401 - imported for model imports

from .closed_result import ClosedResult
from .game import Game
from .grade_record import GradeRecord
from .ledger import MonthlyLedgerEntry, UserLedgerEntry
from .pats_session import PATSSession
from .pick import Pick

__all__ = [
    "PATSSession",
    "Game",
    "Pick",
    "UserLedgerEntry",
    "MonthlyLedgerEntry",
    "GradeRecord",
    "ClosedResult",
]
