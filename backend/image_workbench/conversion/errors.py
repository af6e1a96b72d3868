"""Transform failures. Each maps to one HTTP status and a user-facing message."""
from typing import Iterable, Optional


class TransformError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(TransformError):
    """Bad or missing parameters. Raised before any codec work."""

    status_code = 400

    def __init__(self, message: str, fields: Optional[Iterable[str]] = None):
        super().__init__(message)
        self.fields = list(fields or [])


class DecodeError(TransformError):
    """The source could not be read (corrupt file, unsupported container)."""


class EncodeError(TransformError):
    """The encoder or the disk failed while writing the result."""
