"""Payee normalisation and fuzzy matching used by recurring detection"""

import re
from typing import Iterable, Optional, Sequence

from rapidfuzz import fuzz

from lifeadmin_gateway.domain.models import CategoryRule, MatchStrength, RuleMatch

# Payment-processor boilerplate; longest phrases first so they strip whole
BOILERPLATE_PHRASES = (
    "card payment to",
    "direct debit payment to",
    "direct debit",
    "standing order",
    "payment to",
    "bill payment",
    "contactless",
)
BOILERPLATE_TOKENS = {
    "dd", "so", "card", "vis", "visa", "obp", "fpo", "fpi", "tfr", "pos", "bp",
    "dr", "cr", "ref", "int'l", "intl", "on", "payment",
}

_PHRASE_RE = re.compile("|".join(rf"\b{re.escape(p)}\b" for p in BOILERPLATE_PHRASES))
_REFERENCE_RE = re.compile(r"\b[a-z]*\d{5,}[a-z\d]*\b")  # long reference numbers
_DATE_RE = re.compile(r"\b\d{1,2}[/-]\d{1,2}(?:[/-]\d{2,4})?\b")
_AMOUNT_RE = re.compile(r"£?\d+\.\d{2}\b")
_NON_WORD_RE = re.compile(r"[^\w&+'.]+")

# Patterns shorter than this only match exactly; fuzzy on "EE" or "BT" is noise
MIN_FUZZY_PATTERN_LENGTH = 4

RULE_SCORE_EXACT = 1.0
RULE_SCORE_UNCATEGORIZED = 0.2


def normalize_description(description: str) -> str:
    """
    Case-fold a statement description and strip processor boilerplate.

    "DD BRITISH GAS 600123456 15/08" -> "british gas"
    """
    text = description.casefold()
    text = _PHRASE_RE.sub(" ", text)
    text = _REFERENCE_RE.sub(" ", text)
    text = _DATE_RE.sub(" ", text)
    text = _AMOUNT_RE.sub(" ", text)
    text = _NON_WORD_RE.sub(" ", text)

    tokens = [token.strip(".'") for token in text.split()]
    kept = [token for token in tokens if token and token not in BOILERPLATE_TOKENS]
    # Everything stripped: fall back to the folded text so it still groups
    return " ".join(kept) if kept else " ".join(description.casefold().split())


def similarity(a: str, b: str) -> float:
    """
    Token-set similarity in [0, 1].

    Token-set ratio compares the shared token set against each string's
    remainder, so "british gas" and "british gas ltd" score 1.0 while word
    order and duplicated tokens do not matter.
    """
    if not a or not b:
        return 0.0
    return fuzz.token_set_ratio(a, b) / 100


def best_window_score(needle: str, haystack: str) -> float:
    """
    Best `fuzz.ratio` of `needle` against runs of whole tokens in `haystack`.

    Windows span the pattern's token count plus or minus one, which covers
    words that a statement split or ran together.
    """
    tokens = haystack.split()
    width = len(needle.split())
    best = 0.0
    for size in range(max(1, width - 1), width + 2):
        for start in range(0, max(1, len(tokens) - size + 1)):
            window = " ".join(tokens[start:start + size])
            best = max(best, fuzz.ratio(needle, window) / 100)
    return best


def fuzzy_contains(text: str, pattern: str, threshold: float) -> RuleMatch:
    """
    Does `pattern` occur in `text`, exactly or approximately?

    Exact: the normalised pattern occurs in the normalised text on word boundaries.
    Fuzzy: the best whole-token window of the text scores >= threshold against
    the pattern, so "rent" never matches inside "parentpay".
    """
    haystack = " ".join(text.casefold().split())
    needle = " ".join(pattern.casefold().split())
    if not haystack or not needle:
        return RuleMatch(rule=None, strength=MatchStrength.NONE, score=0.0)

    if re.search(rf"(?<!\w){re.escape(needle)}(?!\w)", haystack):
        return RuleMatch(rule=None, strength=MatchStrength.EXACT, score=1.0, matched_pattern=pattern)

    if len(needle) >= MIN_FUZZY_PATTERN_LENGTH:
        score = best_window_score(needle, haystack)
        if score >= threshold:
            return RuleMatch(rule=None, strength=MatchStrength.FUZZY, score=score, matched_pattern=pattern)

    return RuleMatch(rule=None, strength=MatchStrength.NONE, score=0.0)


def match_category_rule(
    texts: Iterable[str],
    rules: Sequence[CategoryRule],
    threshold: float,
) -> RuleMatch:
    """
    Find the rule that best explains a payee.

    The first rule with an exact pattern hit wins; otherwise the highest
    scoring fuzzy hit; otherwise no match.
    """
    candidates = [t for t in texts if t]
    best: Optional[RuleMatch] = None

    for rule in rules:
        if not rule.active:
            continue
        for pattern in rule.patterns:
            for text in candidates:
                result = fuzzy_contains(text, pattern, threshold)
                if result.strength == MatchStrength.EXACT:
                    return RuleMatch(rule=rule, strength=result.strength, score=1.0, matched_pattern=pattern)
                if result.strength == MatchStrength.FUZZY and (best is None or result.score > best.score):
                    best = RuleMatch(rule=rule, strength=result.strength, score=result.score, matched_pattern=pattern)

    return best or RuleMatch(rule=None, strength=MatchStrength.NONE, score=0.0)


def rule_match_score(match: RuleMatch) -> float:
    """Map match strength to the rule component of confidence: exact > fuzzy > none"""
    if match.strength == MatchStrength.EXACT:
        return RULE_SCORE_EXACT
    if match.strength == MatchStrength.FUZZY:
        return 0.5 + 0.3 * match.score
    return RULE_SCORE_UNCATEGORIZED
