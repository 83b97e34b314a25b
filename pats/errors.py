"""
Error taxonomy for the PATS ledger.

Services raise these; the API blueprint turns them into JSON responses.
No state is mutated when one of them is raised from inside a ledger
transaction: the transaction rolls back before the error propagates.
"""


class PATSError(Exception):
    """Base class for all ledger errors"""

    status_code = 500

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self):
        return {"error": self.message, "type": type(self).__name__}


class ValidationError(PATSError):
    """Bad input: unknown ids, picks on started games, duplicate double-downs"""

    status_code = 400


class GameAlreadyStartedError(ValidationError):
    pass


class DuplicateDoubleDownError(ValidationError):
    pass


class NotFoundError(ValidationError):
    """Session, game or user absent"""

    status_code = 404


class ConflictError(PATSError):
    """Another session of the same kind is already active, or the user already exists"""

    status_code = 409


class PersistenceError(PATSError):
    """The write-back did not durably complete"""

    status_code = 500
