"""Text normalization and string similarity for transaction descriptions."""

import re


class TextNormalizer:
    """Normalize free-text descriptions for matching."""

    def __init__(self):
        self.patterns = [
            (r"ё", "е"),  # Fold ё into е
            (r"[^a-zа-я0-9\s]", " "),  # Drop punctuation and symbols
            (r"\s+", " "),
        ]

    def normalize(self, text: str | None) -> str:
        """Lowercase, fold ё, keep Latin/Cyrillic letters and digits, collapse whitespace."""
        if not text:
            return ""

        normalized = text.lower()
        for pattern, replacement in self.patterns:
            normalized = re.sub(pattern, replacement, normalized)

        return normalized.strip()

    def tokens(self, text: str | None, min_length: int = 1) -> list[str]:
        """Split normalized text into words of at least ``min_length`` characters."""
        return [word for word in self.normalize(text).split() if len(word) >= min_length]


def bigrams(text: str) -> set[str]:
    return {text[i : i + 2] for i in range(len(text) - 1)}


def dice_similarity(a: str, b: str) -> float:
    """Sørensen–Dice coefficient over character bigrams, in [0, 1]."""
    if a == b:
        return 1.0
    if not a or not b:
        return 0.0

    bigrams_a = bigrams(a)
    bigrams_b = bigrams(b)
    total = len(bigrams_a) + len(bigrams_b)
    if total == 0:
        return 0.0

    return 2 * len(bigrams_a & bigrams_b) / total


def are_similar(a: str, b: str, threshold: float = 0.7) -> bool:
    """Containment in either direction, or Dice similarity at or above threshold."""
    if not a or not b:
        return False
    if a in b or b in a:
        return True
    return dice_similarity(a, b) >= threshold


def matches_pattern(text: str, pattern: str) -> bool:
    """Match a wildcard pattern (``*`` any run, ``?`` one char) anywhere in text."""
    regex_pattern = re.escape(pattern).replace(r"\*", ".*").replace(r"\?", ".")
    try:
        return re.search(regex_pattern, text, flags=re.IGNORECASE) is not None
    except re.error:
        return pattern in text
