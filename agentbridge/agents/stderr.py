"""
Best-effort classification of vendor stderr output.

Vendor CLIs print progress, warnings and real failures to stderr with no
structure. A line only becomes an error status when it matches one of the
markers below.
"""

import re
from dataclasses import dataclass


@dataclass(frozen=True)
class StderrError:
    category: str
    detail: str


# Order matters: the first matching category wins
_ERROR_PATTERNS: list[tuple[str, re.Pattern]] = [
    ("rate_limit", re.compile(r"rate.?limit|too many requests|\b429\b|quota exceeded", re.IGNORECASE)),
    ("context_limit", re.compile(r"context.?(length|window|limit)|maximum context|too many tokens", re.IGNORECASE)),
    ("auth", re.compile(r"invalid.?api.?key|unauthori[sz]ed|\b401\b|authentication (failed|error)", re.IGNORECASE)),
    ("network", re.compile(r"ECONNREFUSED|ETIMEDOUT|ENOTFOUND|network error|connection (refused|reset)", re.IGNORECASE)),
    ("error", re.compile(r"Error|error|Exception|Traceback")),
]

MAX_DETAIL_CHARS = 500


def classify_stderr(text: str) -> StderrError | None:
    """
    Check a piece of stderr for an error marker.

    Args:
        text: One stderr line (or chunk).

    Returns:
        The matched category and a trimmed detail string, or None.
    """
    stripped = text.strip()
    if not stripped:
        return None

    for category, pattern in _ERROR_PATTERNS:
        if pattern.search(stripped):
            return StderrError(category=category, detail=stripped[:MAX_DETAIL_CHARS])
    return None
