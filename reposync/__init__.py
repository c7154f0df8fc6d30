"""
REPOSYNC — unattended git synchronization.

Keeps a local working copy reconciled with its remote on a timer
and on demand, with an append-only memory of every attempt.
"""

from reposync.identity import __codename__, __tagline__, __version__

__all__ = ["__codename__", "__tagline__", "__version__"]
