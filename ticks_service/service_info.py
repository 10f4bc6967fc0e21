"""
Service version information.
"""

import os

VERSION = "devel"
COMMIT_HASH = os.getenv("TICKS_COMMIT_HASH", "")


def full_version() -> str:
    """``devel`` or ``devel-<commit>`` when the build stamped a commit hash."""
    if COMMIT_HASH:
        return f"{VERSION}-{COMMIT_HASH}"
    return VERSION
