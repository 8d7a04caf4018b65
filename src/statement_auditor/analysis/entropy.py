import math
import re
from collections import Counter

from statement_auditor.analysis.similarity import normalize_description
from statement_auditor.domain.patterns import fold_text

ROUND_AMOUNT_STEPS = (100, 500, 1000, 2500, 5000, 10000, 25000, 50000)

_GENERIC_WORDING = (
    (re.compile(r"frais\s+divers"), 0.25),
    (re.compile(r"commission\s+diverse"), 0.25),
    (re.compile(r"autres?\s+frais"), 0.2),
    (re.compile(r"prelevement\s+auto"), 0.15),
    (re.compile(r"frais\s+de\s+gestion"), 0.15),
    (re.compile(r"^frais$"), 0.3),
    (re.compile(r"^commission$"), 0.3),
)

_COMMON_WORDS = (
    "de", "la", "le", "du", "des", "et", "en", "un", "une", "pour", "sur", "par",
    "avec", "au", "aux", "frais", "compte", "virement", "paiement", "carte", "retrait",
)

_REPEATED_CHUNK_RE = re.compile(r"(.{2,})\1{2,}")


def _entropy(counts: Counter, total: int) -> float:
    entropy = 0.0
    for count in counts.values():
        probability = count / total
        entropy -= probability * math.log2(probability)
    return entropy


def shannon_entropy(text: str) -> float:
    """Character-level Shannon entropy in bits of the normalized description."""
    normalized = normalize_description(text)
    if not normalized:
        return 0.0
    return _entropy(Counter(normalized), len(normalized))


def word_entropy(text: str) -> float:
    words = re.findall(r"\w+", text.casefold())
    if not words:
        return 0.0
    return _entropy(Counter(words), len(words))


def normalized_entropy(text: str) -> float:
    """Entropy divided by its maximum for this length, in [0, 1]."""
    normalized = normalize_description(text)
    if len(normalized) <= 1:
        return 0.0
    return shannon_entropy(normalized) / math.log2(len(normalized))


def looks_random(text: str) -> bool:
    """Heuristic for machine-generated labels (mixed digits, symbols, no common words)."""
    if not text:
        return False
    length = len(text)
    score = 0.0
    if shannon_entropy(text) > 4.0:
        score += 0.3
    alpha_ratio = sum(char.isalpha() for char in text) / length
    digit_ratio = sum(char.isdigit() for char in text) / length
    special_ratio = sum(not char.isalnum() and not char.isspace() for char in text) / length
    if digit_ratio > 0.3 and alpha_ratio > 0.3:
        score += 0.2
    if special_ratio > 0.2:
        score += 0.2
    if _REPEATED_CHUNK_RE.search(text):
        score -= 0.1
    words = fold_text(text).split()
    if not any(common in word for word in words for common in _COMMON_WORDS):
        score += 0.2
    return score > 0.5


def description_suspicion(text: str) -> float:
    """Score in [0, 1] for how vague a fee label is."""
    folded = fold_text(text)
    score = sum(weight for pattern, weight in _GENERIC_WORDING if pattern.search(folded))
    if len(text) < 15:
        score += 0.15
    if len(text) < 25 and word_entropy(text) < 1.5:
        score += 0.1
    if looks_random(text):
        score += 0.2
    return min(score, 1.0)


def is_round_amount(amount: float) -> bool:
    magnitude = abs(amount)
    return any(magnitude >= step and magnitude % step == 0 for step in ROUND_AMOUNT_STEPS)


def round_amount_score(amount: float) -> float:
    """Trailing zeros of the integer part, saturating at three (1,000 scores 1.0)."""
    whole = int(abs(amount))
    if whole == 0:
        return 0.0
    zeros = 0
    while whole % 10 == 0:
        zeros += 1
        whole //= 10
    return min(zeros / 3, 1.0)
