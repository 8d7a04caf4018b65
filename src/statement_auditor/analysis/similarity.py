"""
Pure similarity measures shared by the detectors.

All functions are deterministic and symmetric in their two transaction or
text arguments, so pairwise scans can compare each unordered pair once.
"""
import re

from rapidfuzz.distance import Levenshtein

from statement_auditor.models import SimilarityWeights, Transaction

WEIGHT_SUM_TOLERANCE = 1e-6

_TOKEN_SPLIT_RE = re.compile(r"[\W_]+")


def normalize_description(text: str) -> str:
    return " ".join(text.casefold().split())


def tokenize(text: str) -> set[str]:
    return {token for token in _TOKEN_SPLIT_RE.split(text.casefold()) if token}


def edit_distance(first: str, second: str) -> int:
    return Levenshtein.distance(normalize_description(first), normalize_description(second))


def token_similarity(first: str, second: str) -> float:
    """Jaccard index of the token sets. Two empty descriptions are identical."""
    tokens_a = tokenize(first)
    tokens_b = tokenize(second)
    if not tokens_a and not tokens_b:
        return 1.0
    return len(tokens_a & tokens_b) / len(tokens_a | tokens_b)


def text_similarity(first: str, second: str) -> float:
    norm_a = normalize_description(first)
    norm_b = normalize_description(second)
    longest = max(len(norm_a), len(norm_b))
    if longest == 0:
        return 1.0
    edit_score = 1.0 - Levenshtein.distance(norm_a, norm_b) / longest
    return (token_similarity(norm_a, norm_b) + edit_score) / 2


def amount_similarity(first: float, second: float, tolerance_pct: float) -> float:
    """
    1.0 while the relative gap between magnitudes is within tolerance,
    then decays linearly with the gap down to 0.
    """
    abs_a = abs(first)
    abs_b = abs(second)
    ratio = abs(abs_a - abs_b) / max(abs_a, abs_b, 1.0)
    if ratio <= tolerance_pct:
        return 1.0
    return max(0.0, 1.0 - ratio)


def temporal_weight(days_apart: float, half_life_days: float) -> float:
    if half_life_days <= 0:
        raise ValueError("half_life_days must be positive")
    return 2.0 ** (-abs(days_apart) / half_life_days)


def composite_transaction_score(
    first: Transaction,
    second: Transaction,
    weights: SimilarityWeights,
    amount_tolerance: float = 0.01,
    half_life_days: float = 7.0,
) -> float:
    total = weights.amount + weights.text + weights.time
    if abs(total - 1.0) > WEIGHT_SUM_TOLERANCE:
        raise ValueError(f"Similarity weights must sum to 1, got {total}")

    days_apart = abs((first.date - second.date).days)
    return (
        weights.amount * amount_similarity(first.amount, second.amount, amount_tolerance)
        + weights.text * text_similarity(first.description, second.description)
        + weights.time * temporal_weight(days_apart, half_life_days)
    )
