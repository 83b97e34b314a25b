"""
Single-writer access to the persisted ledger state.

Every mutating operation runs inside ``LedgerStore.transaction()``: one
process-wide lock, one database transaction, one commit. If anything
inside raises, or the commit itself fails, the transaction is rolled
back and the session's identity map is expired, so in-memory objects
reload the last committed state instead of the failed write.
"""

import logging
import threading
from contextlib import contextmanager

from sqlalchemy.exc import SQLAlchemyError

from pats import db
from pats.errors import PersistenceError

logger = logging.getLogger(__name__)


class LedgerStore:
    """Transactional store behind a mutex"""

    def __init__(self, database=None):
        self.db = database or db
        self._lock = threading.RLock()
        self._depth = 0

    @property
    def session(self):
        return self.db.session

    @contextmanager
    def transaction(self, operation="ledger write"):
        with self._lock:
            # Nested calls join the outer transaction
            if self._depth:
                self._depth += 1
                try:
                    yield self.session
                finally:
                    self._depth -= 1
                return

            self._depth = 1
            try:
                yield self.session
                self.session.commit()
            except SQLAlchemyError as e:
                self.session.rollback()
                logger.error(f"{operation} failed, rolled back: {e}", exc_info=True)
                raise PersistenceError(f"Could not persist {operation}") from e
            except Exception:
                self.session.rollback()
                raise
            finally:
                self._depth = 0


ledger_store = LedgerStore()
