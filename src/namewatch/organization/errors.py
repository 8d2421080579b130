"""Errors raised while naming and renaming files."""


class NamingError(Exception):
    """Raised when a description sanitizes to an empty filename."""


class RenameError(Exception):
    """Raised when a rename cannot be completed without overwriting another file."""
