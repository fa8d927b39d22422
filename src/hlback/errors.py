class HlbackError(Exception):
    """Base exception for hlback."""


class UsageError(HlbackError):
    """Raised for invalid command line input, sources files or config files."""


class PathError(HlbackError):
    """Raised when a required file or directory cannot be found, created or accessed."""


class RecoverableItemError(HlbackError):
    """
    Raised when a single item cannot be backed up.

    The engine turns it into a warning and carries on with the next item.
    """
