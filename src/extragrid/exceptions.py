"""Custom exceptions for extragrid."""

from __future__ import annotations


class ExtraGridError(Exception):
    """Base exception for all extragrid errors."""

    pass


class ValidationError(ExtraGridError):
    """Raised when user input is rejected before any mutation."""

    pass


class ImportValidationError(ValidationError):
    """Raised when an import file or its column mapping cannot be applied.

    The message is user-facing; the table is left unchanged.
    """

    def __init__(self, message: str, file_name: str | None = None) -> None:
        self.file_name = file_name
        super().__init__(message)


class InvalidCellValueError(ValidationError):
    """Raised when a value does not fit the declared type of its column."""

    def __init__(self, column_id: str, column_type: str, value: object) -> None:
        self.column_id = column_id
        self.column_type = column_type
        self.value = value
        super().__init__(
            f"Value {value!r} is not a valid {column_type} for column '{column_id}'"
        )


class TransportError(ExtraGridError):
    """Base exception for table store errors."""

    pass


class AuthenticationError(TransportError):
    """Raised when authentication fails (401/403)."""

    pass


class NotFoundError(TransportError):
    """Raised when a table or row is not found (404)."""

    def __init__(self, resource_id: str, message: str | None = None) -> None:
        self.resource_id = resource_id
        super().__init__(message or f"Not found: {resource_id}")


class APIError(TransportError):
    """Raised for other API errors."""

    def __init__(self, status_code: int, message: str) -> None:
        self.status_code = status_code
        super().__init__(f"API error {status_code}: {message}")


class EnrichmentError(ExtraGridError):
    """Raised when the enrichment/generation collaborator fails."""

    pass
