from __future__ import annotations


class FormDataError(Exception):
    """Base error for the form-data parser."""


class FormDataParseError(FormDataError):
    """Malformed multipart body."""


class FormDataLimitExceeded(FormDataParseError):
    """Too many files or fields in one request."""
