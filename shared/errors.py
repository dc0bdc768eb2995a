from typing import Optional


class DomainError(Exception):
    """Base class for errors surfaced to API callers.

    ``kind`` is the stable identifier clients switch on, ``status_code`` the
    HTTP status the boundary maps it to and ``retryable`` tells the caller
    whether resending the same request after reloading state may succeed.
    """
    kind = "error"
    status_code = 500
    retryable = False

    def __init__(self, message: str = None):
        self.message = message or self.__class__.__name__
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "message": self.message,
            "retryable": self.retryable,
        }


class ValidationError(DomainError):
    kind = "validation_error"
    status_code = 400


class NotFound(DomainError):
    kind = "not_found"
    status_code = 404


class NotAuthorized(DomainError):
    kind = "not_authorized"
    status_code = 403


class Conflict(DomainError):
    kind = "conflict"
    status_code = 409
    retryable = True


class AlreadyRegistered(Conflict):
    kind = "already_registered"


class TournamentFull(Conflict):
    kind = "tournament_full"


class VersionConflict(Conflict):
    kind = "version_conflict"

    def __init__(self, expected: int, actual: Optional[int], message: str = None):
        self.expected = expected
        self.actual = actual
        super().__init__(
            message or f"Stale version {expected}, current version is {actual}"
        )


class InvalidTransition(Conflict):
    kind = "invalid_transition"
    retryable = False

    def __init__(self, from_state: str, action: str, reason: str = None):
        self.from_state = from_state
        self.action = action
        super().__init__(
            reason or f"Cannot {action} a match in state '{from_state}'"
        )


class StorageFailure(DomainError):
    kind = "storage_failure"
    status_code = 503
    retryable = True
