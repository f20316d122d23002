"""Small fuzzy matcher for @mention suggestions."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Sequence


@dataclass(frozen=True)
class MentionCandidate:
    key: str
    label: str
    path: str
    kind: str = "file"
    size: int | None = None


def score(query: str, target: str) -> float:
    """Higher is better; ``-inf`` means no match.

    A substring hit scores around 100, minus 2 per character of offset (so a
    prefix beats a later occurrence) and 0.1 per extra character of target.
    Otherwise characters are matched in order and the score stays below any
    substring hit.
    """
    if not query:
        return 0.1
    q = query.lower()
    t = target.lower()
    idx = t.find(q)
    if idx >= 0:
        return 100 - idx * 2 - (len(t) - len(q)) * 0.1
    matched = 0
    pos = 0
    for ch in q:
        found = t.find(ch, pos)
        if found < 0:
            break
        matched += 1
        pos = found + 1
    if matched == 0:
        return -math.inf
    return matched - (len(t) - matched) * 0.01


def fuzzy_search(query: str, items: Sequence[MentionCandidate], limit: int = 8) -> list[MentionCandidate]:
    """Rank ``items`` by score; equal scores keep candidate-pool order.

    Lexical order is not used for ties: it would put ``reader.ts`` ahead of an
    equally scored ``readme.md`` listed before it.
    """
    scored = [(score(query, f"{item.label} {item.path}"), idx, item) for idx, item in enumerate(items)]
    ranked = sorted((entry for entry in scored if entry[0] > -math.inf), key=lambda entry: (-entry[0], entry[1]))
    return [item for _, _, item in ranked[:limit]]
