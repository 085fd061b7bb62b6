"""
Exception types shared by the storage, audit and upload layers.
"""


class StorageError(Exception):
    """A backend read, write, append or list operation failed."""

    def __init__(self, message: str, path: str = None):
        super().__init__(message)
        self.path = path


class LogFormatError(ValueError):
    """An audit log cannot be decoded at all (e.g. its header is unusable)."""


class InvalidPrincipalError(ValueError):
    """A principal identifier cannot be mapped to a log path."""


class FileSizeExceededError(Exception):
    """Uploaded file is larger than the configured maximum."""


class InvalidFileTypeError(Exception):
    """Uploaded file has a content type outside the allow-list."""
