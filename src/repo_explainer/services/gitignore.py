"""Minimal ``.gitignore`` evaluator.

Supports comments, negation (``!``), directory-only patterns (trailing
``/``), anchoring (leading or embedded ``/``), ``*``, ``?``, character
classes and ``**``.  The last matching pattern wins, and nothing below an
ignored directory can be re-included.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path


DEFAULT_PATTERNS: tuple[str, ...] = (
    # Version control
    ".git/", ".svn/", ".hg/", ".bzr/",
    # IDE and editors
    ".vscode/", ".idea/", "*.swp", "*.swo", "*~", ".DS_Store", "Thumbs.db",
    # Dependencies and build artifacts
    "node_modules/", "vendor/", "build/", "dist/", "target/",
    "*.o", "*.so", "*.dylib", "*.dll", "*.exe", "*.pyc", "__pycache__/",
    # Logs and temporary files
    "*.log", "*.tmp", "*.temp", ".cache/",
    # Binary files
    "*.jpg", "*.jpeg", "*.png", "*.gif", "*.svg", "*.ico", "*.pdf",
    "*.zip", "*.tar", "*.gz", "*.mp4", "*.mp3",
)  # fmt: skip


@dataclass(frozen=True, slots=True)
class _Pattern:
    regex: re.Pattern[str]
    negate: bool
    dir_only: bool
    original: str


def _glob_to_regex(glob: str) -> str:
    out: list[str] = []
    i, n = 0, len(glob)
    while i < n:
        ch = glob[i]
        if ch == "*":
            if glob.startswith("**/", i):
                out.append("(?:.*/)?")
                i += 3
                continue
            if glob.startswith("**", i):
                out.append(".*")
                i += 2
                continue
            out.append("[^/]*")
        elif ch == "?":
            out.append("[^/]")
        elif ch == "[":
            end = glob.find("]", i + 1)
            if end == -1:
                out.append(re.escape(ch))
            else:
                body = glob[i + 1 : end]
                if body.startswith("!"):
                    body = "^" + body[1:]
                out.append(f"[{body}]")
                i = end
        elif ch == "\\" and i + 1 < n:
            i += 1
            out.append(re.escape(glob[i]))
        else:
            out.append(re.escape(ch))
        i += 1
    return "".join(out)


def compile_pattern(line: str) -> _Pattern | None:
    """Compile one ``.gitignore`` line; ``None`` for blanks and comments."""
    original = line
    line = line.rstrip()
    if not line or line.startswith("#"):
        return None
    if line.startswith("\\#") or line.startswith("\\!"):
        line = line[1:]
        negate = False
    elif line.startswith("!"):
        negate = True
        line = line[1:]
    else:
        negate = False

    dir_only = line.endswith("/")
    line = line.rstrip("/")
    if not line:
        return None

    anchored = "/" in line
    line = line.lstrip("/")
    body = _glob_to_regex(line)
    prefix = "" if anchored or line.startswith("**") else "(?:.*/)?"
    return _Pattern(re.compile(f"^{prefix}{body}$"), negate, dir_only, original)


class GitIgnore:
    """An ordered list of ignore patterns evaluated against root-relative paths."""

    def __init__(self, patterns: list[str] | None = None) -> None:
        self._patterns: list[_Pattern] = []
        for line in patterns or ():
            self.add_pattern(line)

    @classmethod
    def with_defaults(cls) -> GitIgnore:
        return cls(list(DEFAULT_PATTERNS))

    def add_pattern(self, line: str) -> None:
        compiled = compile_pattern(line)
        if compiled is not None:
            self._patterns.append(compiled)

    def load_file(self, path: Path) -> None:
        """Append the patterns of a ``.gitignore`` file; a missing file is fine."""
        try:
            text = path.read_text(encoding="utf-8", errors="replace")
        except FileNotFoundError:
            return
        for line in text.splitlines():
            self.add_pattern(line)

    def _match(self, rel_path: str, is_dir: bool) -> bool:
        ignored = False
        for pattern in self._patterns:
            if pattern.dir_only and not is_dir:
                continue
            if pattern.regex.match(rel_path):
                ignored = not pattern.negate
        return ignored

    def is_ignored(self, rel_path: str, is_dir: bool = False) -> bool:
        """Whether *rel_path* (POSIX separators) or any of its parents is ignored."""
        rel_path = rel_path.strip("/")
        if not rel_path:
            return False
        parts = rel_path.split("/")
        for depth in range(1, len(parts)):
            if self._match("/".join(parts[:depth]), True):
                return True
        return self._match(rel_path, is_dir)
