"""
REPOSYNC error taxonomy.

Git-level failures live in reposync.runner, sync-level
classifications (rejection, conflict) in reposync.engine.
Everything derives from ReposyncError.
"""

from __future__ import annotations


class ReposyncError(Exception):
    """Base class for every error raised by REPOSYNC."""
    pass


class ConfigurationError(ReposyncError):
    """No active project, controller not started, or the directory is in the wrong state."""
    pass


class SessionError(ReposyncError):
    """Raised when an action targets a session that is unknown or already closed."""
    pass
