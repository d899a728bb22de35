"""Cosine similarity ranking over stored message embeddings."""

from __future__ import annotations

import math
from typing import TYPE_CHECKING

from src.memory.models import ScoredMessage

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from src.memory.models import Message


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float | None:
    """Return ``dot(a, b) / (|a| * |b|)``.

    Returns None when the similarity is undefined: vectors of different
    length, empty vectors, or either vector with zero norm.
    """
    if len(a) != len(b) or not a:
        return None
    norm_a = math.sqrt(math.fsum(x * x for x in a))
    norm_b = math.sqrt(math.fsum(y * y for y in b))
    if norm_a == 0.0 or norm_b == 0.0:
        return None
    dot = math.fsum(x * y for x, y in zip(a, b, strict=True))
    # Clamp float drift so sim(a, a) never exceeds 1.
    return max(-1.0, min(1.0, dot / (norm_a * norm_b)))


def rank_by_similarity(
    query: Sequence[float],
    candidates: Iterable[Message],
    limit: int,
) -> list[ScoredMessage]:
    """Score *candidates* against *query* and return the best *limit*.

    Messages without an embedding, or whose similarity is undefined, are
    skipped rather than scored as zero. Ties go to the most recent message.
    """
    if limit <= 0:
        return []

    scored = []
    for message in candidates:
        if message.embedding is None:
            continue
        score = cosine_similarity(query, message.embedding)
        if score is None:
            continue
        scored.append(ScoredMessage(message=message, score=score))

    scored.sort(key=lambda s: (s.score, s.message.timestamp), reverse=True)
    return scored[:limit]
