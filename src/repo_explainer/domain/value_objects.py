"""Value objects — self-validating domain primitives."""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path

from repo_explainer.domain.exceptions import (
    InvalidRepositoryPathError,
    InvalidRepositoryUrlError,
)

_GITHUB_URL_RE = re.compile(
    r"^https?://github\.com/(?P<owner>[A-Za-z0-9\-_.]+)/(?P<repo>[A-Za-z0-9\-_.]+?)(?:\.git)?/?$"
)
_GIT_URL_RE = re.compile(r"^(?:https?://|git@|ssh://)[^\s]+$")


@dataclass(frozen=True, slots=True)
class RepositoryUrl:
    """Validated remote repository URL.

    Any ``https://``, ``ssh://`` or ``git@`` URL is accepted.  For GitHub
    URLs *owner* and *repo* are extracted, e.g. ``psf`` and ``requests`` for
    ``https://github.com/psf/requests``.
    """

    raw: str
    owner: str | None = None
    repo: str | None = None

    @classmethod
    def from_string(cls, url: str) -> RepositoryUrl:
        """Parse and validate a raw URL string."""
        url = url.strip()
        if not _GIT_URL_RE.match(url):
            raise InvalidRepositoryUrlError(
                f"Invalid repository URL: '{url}'. "
                "Expected e.g. https://github.com/<owner>/<repo>"
            )
        match = _GITHUB_URL_RE.match(url)
        if match:
            return cls(raw=url, owner=match["owner"], repo=match["repo"])
        return cls(raw=url)

    @property
    def is_github(self) -> bool:
        return self.owner is not None

    @property
    def full_name(self) -> str:
        if self.is_github:
            return f"{self.owner}/{self.repo}"
        return self.raw

    def with_token(self, token: str | None) -> str:
        """Return the clone URL with *token* embedded for HTTPS GitHub access."""
        if not token or not self.is_github:
            return self.raw
        return f"https://{token}@github.com/{self.owner}/{self.repo}.git"


def resolve_local_root(path: str) -> Path:
    """Validate that *path* is an existing directory and return it absolute."""
    root = Path(path).expanduser()
    if not root.is_dir():
        raise InvalidRepositoryPathError(f"Not a directory: '{path}'")
    return root.resolve()
