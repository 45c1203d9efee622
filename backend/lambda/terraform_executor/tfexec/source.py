"""tfexec.source: git checkouts of the primary repository and module repositories."""

from __future__ import annotations

import base64
import logging
import os
import subprocess
from pathlib import Path
from typing import List, Optional, Protocol, Union

from tfexec.errors import FetchError

__all__ = [
    "GitFetcher",
    "SourceFetcher",
]

_GIT_TIMEOUT_SECONDS = 600


class SourceFetcher(Protocol):
    def fetch(self, address: str, destination: Union[str, Path], revision: Optional[str] = None) -> None:
        ...


class GitFetcher:
    """Clones repositories with the git CLI.

    The token is sent as a basic-auth header through ``http.extraHeader`` so it
    never appears in the clone URL, the remote config or error messages.
    """

    def __init__(
        self,
        token: str = "",
        git_bin: str = "git",
        timeout: int = _GIT_TIMEOUT_SECONDS,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._token = token
        self._git = git_bin
        self._timeout = timeout
        self._logger = logger or logging.getLogger(__name__)

    def fetch(self, address: str, destination: Union[str, Path], revision: Optional[str] = None) -> None:
        dest = Path(destination)
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise FetchError(f"failed to create {dest.parent} for {address}: {exc}") from exc

        clone = ["clone", "--quiet"]
        if revision:
            clone.append("--no-checkout")
        self._run(clone + [address, str(dest)], action=f"clone {address}")

        if revision:
            self._run(
                ["-C", str(dest), "checkout", "--quiet", revision],
                action=f"checkout {revision} of {address}",
            )
        self._logger.info("[FETCH] %s@%s -> %s", address, revision or "HEAD", dest)

    def _auth_args(self) -> List[str]:
        if not self._token:
            return []
        basic = base64.b64encode(f"git:{self._token}".encode("utf-8")).decode("ascii")
        return ["-c", f"http.extraHeader=Authorization: Basic {basic}"]

    def _redact(self, text: str) -> str:
        if self._token:
            text = text.replace(self._token, "***")
        return text.strip()

    def _run(self, args: List[str], *, action: str) -> None:
        env = dict(os.environ)
        env["GIT_TERMINAL_PROMPT"] = "0"
        try:
            proc = subprocess.run(
                [self._git, *self._auth_args(), *args],
                env=env,
                stdin=subprocess.DEVNULL,
                capture_output=True,
                text=True,
                timeout=self._timeout,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise FetchError(f"failed to {action}: {self._redact(str(exc))}") from exc
        if proc.returncode != 0:
            detail = self._redact(proc.stderr or proc.stdout or "") or f"exit {proc.returncode}"
            raise FetchError(f"failed to {action}: {detail}")
