"""
Credential & remote URL resolution.

Credentials are read once from the environment (GIT_USERNAME,
GIT_EMAIL, GIT_TOKEN) and treated as read-only afterwards.
A missing value degrades a capability, it never blocks startup.
"""

from __future__ import annotations

import os
import re
from urllib.parse import urlsplit, urlunsplit

from loguru import logger
from pydantic import BaseModel, ConfigDict


class Credentials(BaseModel):
    model_config = ConfigDict(frozen=True)

    username: str | None = None
    email: str | None = None
    token: str | None = None

    @classmethod
    def from_env(cls) -> "Credentials":
        return cls(
            username=os.environ.get("GIT_USERNAME") or None,
            email=os.environ.get("GIT_EMAIL") or None,
            token=os.environ.get("GIT_TOKEN") or None,
        )

    def missing(self) -> list[str]:
        """Names of the environment variables that were not provided."""
        names = {
            "GIT_USERNAME": self.username,
            "GIT_EMAIL": self.email,
            "GIT_TOKEN": self.token,
        }
        return [name for name, value in names.items() if not value]

    def warn_if_incomplete(self) -> list[str]:
        missing = self.missing()
        if missing:
            logger.warning(f"[CREDENTIALS] Missing git credentials: {', '.join(missing)}")
            if "GIT_USERNAME" in missing or "GIT_EMAIL" in missing:
                logger.warning("[CREDENTIALS] Commits will use the repository's existing identity")
            if "GIT_TOKEN" in missing:
                logger.warning("[CREDENTIALS] Pushes to https remotes will not be authenticated")
        return missing

    def authenticated_url(self, remote_url: str) -> str:
        if not self.token:
            logger.warning("[CREDENTIALS] No GIT_TOKEN configured; remote URL left unauthenticated")
        return authenticated_url(remote_url, self.token, self.username)


def authenticated_url(remote_url: str, token: str | None, username: str | None = None) -> str:
    """
    Embed a token as the user-info of an https remote URL.

    Anything that is not a well-formed https URL is returned untouched:
    ssh remotes, local paths, and garbage alike.
    """
    if not token:
        return remote_url

    try:
        parts = urlsplit(remote_url.strip())
        host = parts.hostname
        port = parts.port
    except ValueError:
        return remote_url

    if parts.scheme.lower() != "https" or not host:
        return remote_url

    userinfo = f"{username}:{token}" if username else token
    if ":" in host:
        host = f"[{host}]"
    netloc = f"{userinfo}@{host}"
    if port:
        netloc += f":{port}"

    return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))


def redact_url(url: str) -> str:
    """Strip user-info from a URL before it reaches a log line."""
    try:
        parts = urlsplit(url)
        if not parts.hostname or "@" not in parts.netloc:
            return url
        netloc = parts.netloc.rsplit("@", 1)[1]
        return urlunsplit((parts.scheme, f"***@{netloc}", parts.path, parts.query, parts.fragment))
    except ValueError:
        return url


_USERINFO = re.compile(r"(\b[a-zA-Z][a-zA-Z0-9+.-]*://)[^/@\s'\"]+@")


def redact_text(text: str) -> str:
    """Mask the user-info of every URL embedded in free text (args, git output)."""
    return _USERINFO.sub(r"\1***@", text)
