"""Dedup: near-duplicate chunk filtering by content prefix.

This is a heuristic, not an equality check. Two chunks whose first
``FINGERPRINT_LENGTH`` characters match (ignoring case and whitespace
runs) are treated as duplicates even if they diverge later, and the later
one is dropped. Search snippets from different templates often repeat the
same opening sentence, which is what this catches.
"""

import re

FINGERPRINT_LENGTH = 100

_WS = re.compile(r"\s+")


def content_fingerprint(content: str, length: int = FINGERPRINT_LENGTH) -> str:
    return _WS.sub(" ", (content or "")[:length].lower())


def dedupe_chunks(chunks: list, length: int = FINGERPRINT_LENGTH) -> list:
    """Keep the first chunk per fingerprint, preserving input order.

    Works on anything with a ``content`` attribute (Chunk, RetrievedChunk).
    """
    seen = set()
    unique = []
    for chunk in chunks:
        fp = content_fingerprint(chunk.content, length)
        if fp in seen:
            continue
        seen.add(fp)
        unique.append(chunk)
    return unique
