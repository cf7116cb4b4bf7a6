"""Error types raised at the boundaries of the tracker core."""


class TrackerError(Exception):
    """Base class for tracker failures."""


class InvalidState(TrackerError):
    """Operation referenced an unknown user or project id."""


class StorageUnavailable(TrackerError):
    """Storage call failed or timed out. Transient; callers retry on the next interval."""


class NotFound(TrackerError):
    """Requested entity does not exist."""
