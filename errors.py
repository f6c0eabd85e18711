class MovieDBError(Exception):
    """Base class for errors the movie store and API hand back to callers."""


class RecordNotFoundError(MovieDBError):
    def __init__(self, message: str = "record not found") -> None:
        super().__init__(message)


class EditConflictError(MovieDBError):
    """The row's version moved on since the caller read it. Re-read and retry."""

    def __init__(self, message: str = "edit conflict") -> None:
        super().__init__(message)


class StorageError(MovieDBError):
    """Any other database-level failure."""


class QueryTimeoutError(StorageError):
    """The operation did not complete before its deadline."""


class FailedValidationError(MovieDBError):
    def __init__(self, errors: dict[str, str]) -> None:
        super().__init__("failed validation")
        self.errors = errors


class UnsafeSortParameter(RuntimeError):
    """A sort value outside the safelist reached query construction.

    Raised only when a caller skipped validate_filters(); never converted into
    a validation error.
    """
