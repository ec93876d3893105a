"""Answer confidence (0-100) from retrieval distance, source quality and count.

    similarity = max(0, 1 - mean distance)
    quality    = min(0.15 * allowlisted chunks, 0.4)
    count      = min(0.1 * chunks, 0.3)
    confidence = round(100 * min(1, similarity + quality + count))
"""

from .config import DEFAULT_TRUSTED_SOURCES


def is_trusted(source: str, allowlist=DEFAULT_TRUSTED_SOURCES) -> bool:
    s = (source or "").lower()
    if not s:
        return False
    for entry in allowlist:
        e = entry.lower()
        if not e:
            continue
        # suffix matches must start on a label boundary
        if s == e or s.endswith(e if e.startswith(".") else "." + e):
            return True
        if e.startswith(".") and e in s:
            return True
    return False


def confidence_score(chunks: list, allowlist=DEFAULT_TRUSTED_SOURCES) -> int:
    n = len(chunks)
    if n == 0:
        return 0
    mean_distance = sum(c.distance for c in chunks) / n
    similarity = max(0.0, 1.0 - mean_distance)
    trusted = sum(1 for c in chunks if is_trusted(c.source, allowlist))
    quality = min(0.15 * trusted, 0.4)
    count = min(0.1 * n, 0.3)
    score = round(100 * min(1.0, similarity + quality + count))
    return max(0, min(100, score))
