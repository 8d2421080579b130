"""History log errors."""


class HistoryError(Exception):
    """Raised when the history log cannot be read or durably written."""
