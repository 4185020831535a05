"""Record similarity scoring for duplicate detection."""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

from casebook.core.schema.mapper import is_blank, to_text

if TYPE_CHECKING:
    from casebook.contracts.records import Record
    from casebook.core.config import DuplicateFieldWeight


def levenshtein(a: str, b: str) -> int:
    """Edit distance (insertions, deletions, substitutions) between two strings."""
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            current.append(
                min(
                    previous[j] + 1,
                    current[j - 1] + 1,
                    previous[j - 1] + (char_a != char_b),
                )
            )
        previous = current
    return previous[-1]


def text_similarity(a: Any, b: Any) -> float:
    """``(maxLen - distance) / maxLen`` on trimmed, lower-cased text; 1.0 for two empty strings."""
    left, right = to_text(a).lower(), to_text(b).lower()
    if left == right:
        return 1.0
    longest = max(len(left), len(right))
    return (longest - levenshtein(left, right)) / longest


def exact_similarity(a: Any, b: Any) -> float:
    return 1.0 if to_text(a).lower() == to_text(b).lower() else 0.0


def record_similarity(first: Record, second: Record, weights: Sequence[DuplicateFieldWeight]) -> float:
    """Weighted average similarity over the configured fields.

    Fields empty in both records are left out of the average. Returns 0.0
    when no configured field is populated in either record.
    """
    total_weight = 0.0
    weighted = 0.0
    for entry in weights:
        left, right = first.get(entry.field), second.get(entry.field)
        if is_blank(left) and is_blank(right):
            continue
        score = text_similarity(left, right) if entry.kind == "text" else exact_similarity(left, right)
        total_weight += entry.weight
        weighted += entry.weight * score
    return weighted / total_weight if total_weight else 0.0
