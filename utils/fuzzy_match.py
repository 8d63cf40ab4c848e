"""Fuzzy matching utilities."""
from thefuzz import fuzz
import re


def normalize_for_matching(text):
    """Lowercase and collapse whitespace and punctuation for comparison."""
    text = re.sub(r"[^\w\s]", "", text or "")
    text = re.sub(r"\s+", " ", text)
    return text.strip().lower()


def similarity(first, second):
    """Token-order-insensitive similarity in [0, 1]."""
    a = normalize_for_matching(first)
    b = normalize_for_matching(second)
    if not a or not b:
        return 0.0
    return max(fuzz.ratio(a, b), fuzz.token_sort_ratio(a, b)) / 100.0


def is_near_duplicate(candidate, existing, threshold=0.85):
    """
    Check whether candidate text is nearly the same as any existing text.

    Args:
        candidate: New text
        existing: Iterable of texts already accepted
        threshold: Similarity at or above which texts count as duplicates

    Returns:
        bool
    """
    return any(similarity(candidate, other) >= threshold for other in existing)


def best_match(text, options, threshold=0.7):
    """
    Find the option closest to text.

    Returns:
        tuple: (option, score) or (None, 0.0) when nothing reaches threshold
    """
    best_option, best_score = None, 0.0
    for option in options:
        score = fuzz.partial_ratio(normalize_for_matching(text), normalize_for_matching(option)) / 100.0
        if score > best_score:
            best_option, best_score = option, score

    if best_score >= threshold:
        return best_option, best_score
    return None, 0.0
