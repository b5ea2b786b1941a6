import sqlite3


class WorkoutStoreError(Exception):
    """Base class for all errors raised by the storage layer."""


class NotFoundError(WorkoutStoreError, LookupError):
    """Raised when an operation targets an id that does not exist."""


class ConstraintViolation(WorkoutStoreError, ValueError):
    """Raised when an aggregate breaks a storage or model constraint."""


class InvalidStateTransition(WorkoutStoreError, ValueError):
    """Raised when a workout status change is not allowed from its current state."""

    def __init__(self, workout_id: str, current: str, target: str) -> None:
        super().__init__(f"cannot move workout {workout_id} from {current} to {target}")
        self.workout_id = workout_id
        self.current = current
        self.target = target


class Forbidden(WorkoutStoreError, PermissionError):
    """Raised on attempts to mutate a system-owned template."""


class StorageUnavailable(WorkoutStoreError):
    """Raised when the database file or schema cannot be used."""


def translate_sqlite_error(exc: sqlite3.Error) -> WorkoutStoreError:
    """Map a raw sqlite3 error onto the store taxonomy."""
    if isinstance(exc, sqlite3.IntegrityError):
        return ConstraintViolation(str(exc))
    if isinstance(exc, (sqlite3.OperationalError, sqlite3.DatabaseError)):
        return StorageUnavailable(str(exc))
    return WorkoutStoreError(str(exc))
