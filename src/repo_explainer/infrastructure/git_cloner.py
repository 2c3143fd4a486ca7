"""Git cloner — implements the RepoCloner port with the ``git`` CLI."""

from __future__ import annotations

import asyncio
import logging
import os
import re
import shutil
from pathlib import Path

from repo_explainer.domain.exceptions import CloneError, RepositoryAccessDeniedError
from repo_explainer.domain.value_objects import RepositoryUrl

logger = logging.getLogger(__name__)

AUTH_FAILURE_PHRASES = (
    "authentication failed",
    "invalid username or token",
    "invalid username or password",
    "repository not found",
    "password authentication is not supported",
    "permission denied",
    "could not read username",
)

_CREDENTIALS_RE = re.compile(r"(https?://)[^@/\s]+@")


def is_auth_failure(output: str) -> bool:
    lower = output.lower()
    return any(phrase in lower for phrase in AUTH_FAILURE_PHRASES)


def mask_credentials(text: str) -> str:
    """``https://tok@github.com/…`` → ``https://***@github.com/…``."""
    return _CREDENTIALS_RE.sub(r"\1***@", text)


class GitCloner:
    """Shallow ``git clone`` with terminal prompts disabled.

    A public clone is tried first; when it fails with an authentication
    error and a token was supplied, the clone is retried with the token
    embedded in the HTTPS URL.
    """

    def __init__(self, timeout: float = 300.0, git: str = "git") -> None:
        self._timeout = timeout
        self._git = git

    async def clone(self, url: RepositoryUrl, dest: Path, token: str | None = None) -> None:
        output = await self._run(url.raw, dest)
        if output is None:
            logger.info("Cloned %s", url.full_name)
            return
        if not is_auth_failure(output):
            raise CloneError(f"Failed to clone {url.full_name}: {output}")
        if not token:
            raise RepositoryAccessDeniedError(
                "Repository appears to be private. Please provide a personal access token."
            )

        logger.info("Retrying clone of %s with a token", url.full_name)
        shutil.rmtree(dest, ignore_errors=True)
        output = await self._run(url.with_token(token), dest)
        if output is None:
            logger.info("Cloned %s with token", url.full_name)
            return
        if is_auth_failure(output):
            raise RepositoryAccessDeniedError(
                f"Failed to clone {url.full_name} with the provided token: {output}"
            )
        raise CloneError(f"Failed to clone {url.full_name}: {output}")

    async def _run(self, clone_url: str, dest: Path) -> str | None:
        """Run ``git clone``; ``None`` on success, else the masked output."""
        env = {
            **os.environ,
            "GIT_TERMINAL_PROMPT": "0",
            "GIT_ASKPASS": "echo",
            "GIT_CONFIG_GLOBAL": os.devnull,
            "GIT_CONFIG_SYSTEM": os.devnull,
        }
        try:
            proc = await asyncio.create_subprocess_exec(
                self._git,
                "clone",
                "--depth",
                "1",
                "--quiet",
                clone_url,
                str(dest),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                env=env,
            )
        except OSError as exc:
            raise CloneError(f"Cannot run git: {exc}") from exc

        try:
            async with asyncio.timeout(self._timeout):
                stdout, _ = await proc.communicate()
        except TimeoutError as exc:
            proc.kill()
            await proc.wait()
            raise CloneError(f"git clone timed out after {self._timeout:.0f}s") from exc

        if proc.returncode == 0:
            return None
        output = mask_credentials(stdout.decode("utf-8", errors="replace").strip())
        logger.warning("git clone exited with %s: %s", proc.returncode, output)
        return output or f"git exited with status {proc.returncode}"
