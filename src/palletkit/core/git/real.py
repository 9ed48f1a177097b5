"""Production GitRemote implementation using `git ls-remote`."""

import logging
import os
import subprocess

from palletkit.core.errors import AuthFailure, NetworkFailure, NotFound, SourceResolutionError
from palletkit.core.git.abc import GitRemote, RemoteRef
from palletkit.core.subprocess import run_subprocess_with_context

logger = logging.getLogger(__name__)

_AUTH_MARKERS = (
    "authentication failed",
    "permission denied",
    "could not read username",
    "could not read password",
    "returned error: 403",
    "returned error: 401",
)
_NOT_FOUND_MARKERS = (
    "repository not found",
    "does not appear to be a git repository",
    "does not exist",
    "returned error: 404",
)


class RealGitRemote(GitRemote):
    """Query remotes with `git ls-remote`, classifying failures by stderr."""

    def __init__(self, *, timeout: float) -> None:
        self._timeout = timeout

    def ls_remote(self, url: str, ref: str | None) -> list[RemoteRef]:
        patterns = ["HEAD"] if ref is None else [ref, f"{ref}^{{}}"]
        env = {**os.environ, "GIT_TERMINAL_PROMPT": "0"}

        logger.debug("git ls-remote %s %s", url, " ".join(patterns))
        try:
            result = run_subprocess_with_context(
                ["git", "ls-remote", "--exit-code", url, *patterns],
                operation_context=f"query git remote {url}",
                timeout=self._timeout,
                check=False,
                env=env,
            )
        except subprocess.TimeoutExpired as e:
            raise NetworkFailure(f"Timed out after {self._timeout}s querying {url}") from e
        except RuntimeError as e:
            # check=False, so this is only raised when git itself is missing
            raise SourceResolutionError(f"Cannot query {url}: git is not installed or not on PATH") from e

        if result.returncode == 0:
            return _parse_ls_remote(result.stdout)
        if result.returncode == 2:
            # --exit-code: remote reachable, no matching refs
            return []

        stderr = result.stderr.strip()
        lowered = stderr.lower()
        if any(marker in lowered for marker in _AUTH_MARKERS):
            raise AuthFailure(f"Git remote {url} rejected credentials: {stderr}")
        if any(marker in lowered for marker in _NOT_FOUND_MARKERS):
            raise NotFound(f"Git repository not found: {url}")
        raise NetworkFailure(f"Could not reach git remote {url}: {stderr}")


def _parse_ls_remote(stdout: str) -> list[RemoteRef]:
    refs: list[RemoteRef] = []
    for line in stdout.splitlines():
        sha, sep, name = line.strip().partition("\t")
        if not sep:
            continue
        refs.append(RemoteRef(sha=sha, name=name))
    return refs
