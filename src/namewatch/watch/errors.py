"""Errors raised while watching directories."""


class WatchError(Exception):
    """Raised when a watched root cannot be read or disappears; fatal to the pipeline."""


class StabilityAbort(Exception):
    """Raised when a file vanishes before it settles; the episode is dropped silently."""
