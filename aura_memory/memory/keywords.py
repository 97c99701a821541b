"""
Keyword extraction and similarity primitives.

Retrieval and consolidation both reason about text through the same lens:
a set of lower-cased keywords with punctuation, short tokens and stop-words
removed. Keeping the tokenizer in one place means a record that counts as
"similar" during consolidation is judged by the same words it is recalled by.
"""

from __future__ import annotations

import math
import re
from typing import Iterable

_PUNCTUATION_RE = re.compile(r"[^\w\s]")

MIN_KEYWORD_LENGTH = 4

STOP_WORDS: frozenset[str] = frozenset({
    "that", "this", "with", "from", "have", "been",
    "were", "will", "what", "when", "where", "which",
    "who", "whom", "their", "them", "they", "there",
    "then", "than", "these", "those", "through",
})


def extract_keywords(text: str) -> set[str]:
    """Lower-case, strip punctuation, drop stop-words and tokens of 3 chars or fewer."""
    if not text:
        return set()
    cleaned = _PUNCTUATION_RE.sub("", text.lower())
    return {
        word
        for word in cleaned.split()
        if len(word) >= MIN_KEYWORD_LENGTH and word not in STOP_WORDS
    }


def keywords_from(texts: Iterable[str], tags: Iterable[str] = ()) -> set[str]:
    """Keywords of several text fields plus raw (lower-cased) tags."""
    words: set[str] = set()
    for text in texts:
        words |= extract_keywords(text)
    words |= {tag.lower() for tag in tags if tag}
    return words


def jaccard(a: set[str], b: set[str]) -> float:
    """|A ∩ B| / |A ∪ B|; 0.0 when either side is empty."""
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)


def temporal_decay(age_seconds: float, half_life_seconds: float) -> float:
    """Exponential decay: 1.0 at age 0, 0.5 at one half-life."""
    if half_life_seconds <= 0:
        return 1.0
    age = max(0.0, age_seconds)
    return math.exp(-math.log(2) * age / half_life_seconds)
