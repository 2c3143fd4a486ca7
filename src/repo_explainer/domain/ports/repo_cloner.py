"""Port: repository cloner — defined by the domain, implemented by infrastructure."""

from __future__ import annotations

from pathlib import Path
from typing import Protocol

from repo_explainer.domain.value_objects import RepositoryUrl


class RepoCloner(Protocol):
    """Abstract contract for materialising a remote repository on disk."""

    async def clone(self, url: RepositoryUrl, dest: Path, token: str | None = None) -> None:
        """Shallow-clone *url* into *dest*.

        Raises ``RepositoryAccessDeniedError`` when the remote demands
        credentials that were not supplied (or were rejected).
        """
        ...
