"""Security sentinel — redacts secrets before file content reaches the LLM.

Two passes run over the text: well-known token shapes (AWS keys, GitHub
tokens, JWTs, PEM headers, connection strings) are replaced wherever they
appear, then the value side of ``key = value`` / ``key: value`` lines whose
key names a credential is blanked.  Over-redaction is acceptable; leaking a
key is not.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

# ── Compiled patterns ───────────────────────────────────────────────────────

_TOKEN_PATTERNS: list[tuple[str, re.Pattern[str]]] = [
    ("AWS_KEY", re.compile(r"AKIA[0-9A-Z]{16}")),
    ("GITHUB_TOKEN", re.compile(r"gh[pousr]_[A-Za-z0-9_]{36,}")),
    ("OPENAI_KEY", re.compile(r"sk-[A-Za-z0-9_\-]{20,}")),
    ("SLACK_TOKEN", re.compile(r"xox[abprs]-[A-Za-z0-9\-]{10,}")),
    ("PRIVATE_KEY", re.compile(r"-----BEGIN (?:RSA |EC |DSA |OPENSSH )?PRIVATE KEY-----")),
    ("JWT", re.compile(r"eyJ[A-Za-z0-9_-]{10,}\.[A-Za-z0-9_-]{10,}\.[A-Za-z0-9_-]{10,}")),
    (
        "CONN_STRING",
        re.compile(
            r"(?:postgres(?:ql)?|mysql|mongodb|redis|amqp)(?:\+\w+)?://[^\s'\"]{10,}",
            re.IGNORECASE,
        ),
    ),
    (
        "BEARER",
        re.compile(r"Bearer\s+[A-Za-z0-9_\-/.=]{20,}", re.IGNORECASE),
    ),
]

# ``api_key = "..."``, ``DB_PASSWORD: hunter2``, ``"clientSecret": "..."``
_ASSIGNMENT_RE = re.compile(
    r"""(?P<key>["']?[\w.\-]*(?:api[_\-]?key|apikey|password|passwd|secret|token|credential|private[_\-]?key)[\w.\-]*["']?)"""
    r"""(?P<sep>\s*[:=]\s*)"""
    r"""(?P<value>"[^"\n]*"|'[^'\n]*'|[^\s,;}\n]+)""",
    re.IGNORECASE,
)

_REDACTION = "[REDACTED]"

# Values that are plainly references or placeholders, not secrets.
_HARMLESS_VALUE_RE = re.compile(
    r"""^["']?(?:\$\{?\w+\}?|process\.env\.\w+|os\.environ.*|os\.getenv.*|env\(.*|<[^>]*>|true|false|null|none|""|'')["']?$""",
    re.IGNORECASE,
)


# ── Result type ─────────────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class SanitizedResult:
    """Outcome of a sanitization pass."""

    clean_text: str
    redaction_count: int


# ── Public API ──────────────────────────────────────────────────────────────


def sanitize(text: str) -> SanitizedResult:
    """Replace secret-looking values in *text* with ``[REDACTED]``.

    Returns a :class:`SanitizedResult` with the cleaned text and the number
    of redactions applied.
    """
    count = 0
    result = text

    for _label, pattern in _TOKEN_PATTERNS:
        result, num = pattern.subn(_REDACTION, result)
        count += num

    def _blank(match: re.Match[str]) -> str:
        nonlocal count
        value = match["value"]
        if _REDACTION in value or _HARMLESS_VALUE_RE.match(value):
            return match[0]
        count += 1
        quote = value[0] if value[:1] in ("'", '"') else ""
        return f"{match['key']}{match['sep']}{quote}{_REDACTION}{quote}"

    result = _ASSIGNMENT_RE.sub(_blank, result)
    return SanitizedResult(clean_text=result, redaction_count=count)
