"""
REPOSYNC Command Runner

Runs the git client once per call against an explicit working
directory. Never changes the process cwd, never retries.
Retry policy belongs to the engine.
"""

from __future__ import annotations

import os
import subprocess
from pathlib import Path
from typing import Mapping

from loguru import logger

from reposync.credentials import redact_text
from reposync.errors import ReposyncError


class GitError(ReposyncError):
    """Base class for failures invoking the git client. Credentials in URLs are masked."""

    def __init__(self, message: str, args: list[str] | None = None):
        super().__init__(redact_text(message))
        self.git_args = _redacted(args or [])


class GitCommandError(GitError):
    """git ran and exited non-zero."""

    def __init__(self, args: list[str], exit_code: int, stderr: str = "", stdout: str = ""):
        self.exit_code = exit_code
        self.stderr = redact_text(stderr.strip())
        self.stdout = redact_text(stdout.strip())
        super().__init__(
            f"git {' '.join(args)} failed with code {exit_code}: {self.stderr or self.stdout}",
            args,
        )

    @property
    def output(self) -> str:
        """Combined stderr and stdout; git reports conflicts on stdout."""
        return "\n".join(part for part in (self.stderr, self.stdout) if part)


class GitLaunchError(GitError):
    """The git binary could not be started at all."""
    pass


class GitTimeoutError(GitError):
    """git did not finish within the per-invocation timeout."""

    def __init__(self, args: list[str], timeout: float):
        self.timeout = timeout
        super().__init__(f"git {' '.join(args)} timed out after {timeout}s", args)


class GitRunner:
    """
    Thin subprocess wrapper around the git client.

    Every call is non-interactive: GIT_TERMINAL_PROMPT=0 keeps git
    from blocking on a credential prompt inside the timer thread.
    """

    def __init__(
        self,
        binary: str = "git",
        timeout: float = 120,
        env: Mapping[str, str] | None = None,
    ):
        self.binary = binary
        self.timeout = timeout
        self._env_overrides = dict(env or {})

    def run(self, args: list[str], cwd: Path | str, timeout: float | None = None) -> str:
        """Run `git *args` in cwd and return its stripped stdout."""
        if not args:
            raise ValueError("git argument list must not be empty")

        args = [str(a) for a in args]
        limit = timeout if timeout is not None else self.timeout
        cmd = [self.binary, *args]

        logger.debug(f"[RUNNER] {' '.join(_redacted(cmd))} (cwd={cwd})")

        try:
            result = subprocess.run(
                cmd,
                cwd=cwd,
                capture_output=True,
                text=True,
                timeout=limit,
                env=self._build_env(),
            )
        except subprocess.TimeoutExpired as e:
            raise GitTimeoutError(args, limit) from e
        except OSError as e:
            raise GitLaunchError(f"Failed to execute {self.binary}: {e}", args) from e

        if result.returncode != 0:
            raise GitCommandError(args, result.returncode, result.stderr or "", result.stdout or "")

        return (result.stdout or "").strip()

    def _build_env(self) -> dict[str, str]:
        env = dict(os.environ)
        env["GIT_TERMINAL_PROMPT"] = "0"
        env.update(self._env_overrides)
        return env


def _redacted(args: list[str]) -> list[str]:
    return [redact_text(str(a)) for a in args]
