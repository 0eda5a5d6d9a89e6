"""Path helpers shared by the config layer and the collaborators."""

import os


def expand_home(path: str) -> str:
    """Expand a leading ``~`` or ``~/`` to the current user's home directory."""
    if not path:
        return path
    if path == "~":
        return os.path.expanduser("~")
    if path.startswith("~/"):
        return os.path.join(os.path.expanduser("~"), path[2:])
    return path
