"""Exception hierarchy for the self-heal kernel."""


class HealError(Exception):
    """Base class for all self-heal kernel errors."""
    pass


class ConfigError(HealError):
    """Raised when raw plugin configuration cannot be normalized."""
    pass


class BackupError(HealError):
    """Raised when the host config could not be snapshotted before a disruptive action."""
    pass
