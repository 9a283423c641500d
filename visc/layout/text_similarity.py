"""Text and set similarity helpers."""

import difflib
import re
from collections.abc import Iterable

_WHITESPACE = re.compile(r"\s+")
_TOKEN = re.compile(r"\w+", re.UNICODE)


def normalize_text(text: str | None) -> str:
    """Collapse whitespace and lowercase."""
    if not text:
        return ""
    return _WHITESPACE.sub(" ", text).strip().lower()


def truncate_text(text: str | None, max_length: int) -> str:
    """Normalise whitespace and cut to ``max_length`` characters."""
    if not text:
        return ""
    collapsed = _WHITESPACE.sub(" ", text).strip()
    if len(collapsed) <= max_length:
        return collapsed
    return collapsed[:max_length].rstrip()


def levenshtein_distance(a: str, b: str) -> int:
    """Edit distance between two strings (insert, delete, substitute)."""
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)
    if len(a) < len(b):
        a, b = b, a

    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            current.append(min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + (char_a != char_b),
            ))
        previous = current
    return previous[-1]


def normalized_levenshtein(a: str, b: str) -> float:
    """Edit distance scaled to 0-1 by the longer string's length."""
    longest = max(len(a), len(b))
    if longest == 0:
        return 0.0
    return levenshtein_distance(a, b) / longest


def text_similarity(text1: str | None, text2: str | None) -> float:
    """Similarity ratio between two texts (0-1) using difflib."""
    if not text1 and not text2:
        return 1.0
    if not text1 or not text2:
        return 0.0
    return difflib.SequenceMatcher(None, text1, text2).ratio()


def jaccard_similarity(set1: Iterable, set2: Iterable) -> float:
    """Intersection over union of two collections; 1.0 when both are empty."""
    a = set(set1)
    b = set(set2)
    if not a and not b:
        return 1.0
    return len(a & b) / len(a | b)


def tokenize(text: str | None) -> list[str]:
    return _TOKEN.findall(normalize_text(text))


def token_similarity(text1: str | None, text2: str | None) -> float:
    """Jaccard similarity over lowercase word tokens."""
    return jaccard_similarity(tokenize(text1), tokenize(text2))
