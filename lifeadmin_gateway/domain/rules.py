"""Detection rule sets - built-in UK rules and conversion to immutable snapshots"""

from typing import Any, Dict, List, Mapping, Optional

from lifeadmin_gateway.config import settings
from lifeadmin_gateway.domain.exceptions import ValidationError
from lifeadmin_gateway.domain.models import (
    CategoryRule,
    DetectionRuleSet,
    DetectionSettings,
    Frequency,
    FrequencyBucket,
)

DEFAULT_RULE_SET_NAME = "UK Default Rules"

CATEGORY_ENTRY_TYPES = {
    "utilities": "utility",
    "council_tax": "utility",
    "telecoms": "utility",
    "subscription": "subscription",
    "insurance": "policy",
    "mortgage": "account",
    "loan": "account",
    "rent": "bill",
}

DEFAULT_CATEGORY_RULES: List[Dict[str, Any]] = [
    # Energy
    {"name": "British Gas", "patterns": ["BRITISH GAS", "BG ENERGY", "BRITISHGAS"],
     "category": "utilities", "subcategory": "gas", "provider": "British Gas"},
    {"name": "EDF Energy", "patterns": ["EDF ENERGY", "EDF"],
     "category": "utilities", "subcategory": "electricity", "provider": "EDF Energy"},
    {"name": "E.ON", "patterns": ["E.ON NEXT", "EON NEXT", "E.ON", "EON ENERGY"],
     "category": "utilities", "subcategory": "electricity", "provider": "E.ON"},
    {"name": "Octopus Energy", "patterns": ["OCTOPUS ENERGY"],
     "category": "utilities", "subcategory": "electricity", "provider": "Octopus Energy"},
    {"name": "OVO Energy", "patterns": ["OVO ENERGY", "OVO"],
     "category": "utilities", "subcategory": "electricity", "provider": "OVO Energy"},
    {"name": "Scottish Power", "patterns": ["SCOTTISH POWER", "SCOTTISHPOWER"],
     "category": "utilities", "subcategory": "electricity", "provider": "Scottish Power"},
    # Water
    {"name": "Thames Water", "patterns": ["THAMES WATER", "THAMES WTR"],
     "category": "utilities", "subcategory": "water", "provider": "Thames Water"},
    {"name": "Severn Trent", "patterns": ["SEVERN TRENT"],
     "category": "utilities", "subcategory": "water", "provider": "Severn Trent"},
    {"name": "Anglian Water", "patterns": ["ANGLIAN WATER"],
     "category": "utilities", "subcategory": "water", "provider": "Anglian Water"},
    {"name": "United Utilities", "patterns": ["UNITED UTILITIES"],
     "category": "utilities", "subcategory": "water", "provider": "United Utilities"},
    # Council tax
    {"name": "Council Tax", "patterns": ["COUNCIL TAX", "COUNCIL-TAX", "CT PAYMENT", "BOROUGH COUNCIL", "CITY COUNCIL"],
     "category": "council_tax", "subcategory": "council_tax", "provider": "Local Council"},
    # Telecoms
    {"name": "BT", "patterns": ["BT GROUP", "BRITISH TELECOM", "BT BROADBAND"],
     "category": "telecoms", "subcategory": "broadband", "provider": "BT"},
    {"name": "Sky", "patterns": ["SKY DIGITAL", "SKY UK", "SKY BROADBAND"],
     "category": "telecoms", "subcategory": "broadband", "provider": "Sky"},
    {"name": "Virgin Media", "patterns": ["VIRGIN MEDIA"],
     "category": "telecoms", "subcategory": "broadband", "provider": "Virgin Media"},
    {"name": "Vodafone", "patterns": ["VODAFONE"],
     "category": "telecoms", "subcategory": "mobile", "provider": "Vodafone"},
    {"name": "EE", "patterns": ["EE LIMITED", "EE LTD"],
     "category": "telecoms", "subcategory": "mobile", "provider": "EE"},
    # Subscriptions
    {"name": "Netflix", "patterns": ["NETFLIX", "NETFLIX.COM"],
     "category": "subscription", "subcategory": "streaming", "provider": "Netflix"},
    {"name": "Spotify", "patterns": ["SPOTIFY"],
     "category": "subscription", "subcategory": "streaming", "provider": "Spotify"},
    {"name": "Amazon Prime", "patterns": ["AMAZON PRIME", "PRIME VIDEO", "AMZNPRIME"],
     "category": "subscription", "subcategory": "streaming", "provider": "Amazon Prime"},
    {"name": "Disney+", "patterns": ["DISNEY PLUS", "DISNEYPLUS"],
     "category": "subscription", "subcategory": "streaming", "provider": "Disney+"},
    {"name": "PureGym", "patterns": ["PUREGYM", "PURE GYM"],
     "category": "subscription", "subcategory": "gym", "provider": "PureGym"},
    {"name": "TV Licence", "patterns": ["TV LICENCE", "TV LICENSING", "TVL"],
     "category": "subscription", "subcategory": "tv_licence", "provider": "TV Licensing"},
    # Insurance
    {"name": "Admiral", "patterns": ["ADMIRAL INSURANCE", "ADMIRAL"],
     "category": "insurance", "subcategory": "car", "provider": "Admiral"},
    {"name": "Direct Line", "patterns": ["DIRECT LINE"],
     "category": "insurance", "subcategory": "car", "provider": "Direct Line"},
    {"name": "Aviva", "patterns": ["AVIVA"],
     "category": "insurance", "subcategory": "home", "provider": "Aviva"},
    {"name": "Legal & General", "patterns": ["LEGAL & GENERAL", "LEGAL AND GENERAL", "L&G"],
     "category": "insurance", "subcategory": "life", "provider": "Legal & General"},
    {"name": "Bupa", "patterns": ["BUPA"],
     "category": "insurance", "subcategory": "health", "provider": "Bupa"},
    # Mortgage, loans, rent
    {"name": "Nationwide Mortgage", "patterns": ["NATIONWIDE MORTGAGE", "NBS MORTGAGE"],
     "category": "mortgage", "subcategory": "mortgage", "provider": "Nationwide"},
    {"name": "Halifax Mortgage", "patterns": ["HALIFAX MORTGAGE"],
     "category": "mortgage", "subcategory": "mortgage", "provider": "Halifax"},
    {"name": "Black Horse", "patterns": ["BLACK HORSE", "BLACKHORSE"],
     "category": "loan", "subcategory": "car_finance", "provider": "Black Horse"},
    {"name": "Zopa", "patterns": ["ZOPA"],
     "category": "loan", "subcategory": "personal_loan", "provider": "Zopa"},
    {"name": "Rent", "patterns": ["RENT", "LETTING AGENT", "LETTINGS"],
     "category": "rent", "subcategory": "rent", "provider": None},
]


def entry_type_for_category(category: str) -> str:
    return CATEGORY_ENTRY_TYPES.get(category, "other")


def _buckets_from_mapping(buckets: Mapping[str, Any]) -> tuple:
    result = []
    for name, bounds in buckets.items():
        try:
            frequency = Frequency(name)
            low, high = (int(b) for b in bounds)
        except (ValueError, TypeError) as e:
            raise ValidationError(f"Invalid frequency bucket {name!r}: {bounds!r}") from e
        if low > high:
            raise ValidationError(f"Frequency bucket {name!r} has min > max")
        result.append(FrequencyBucket(frequency=frequency, min_days=low, max_days=high))
    return tuple(sorted(result, key=lambda b: b.min_days))


def detection_settings_from_dict(data: Optional[Mapping[str, Any]] = None) -> DetectionSettings:
    """Build detector settings, falling back to configured defaults per key"""
    data = data or {}
    weights = {**settings.confidence_weights, **(data.get("confidence_weights") or {})}

    min_confidence = float(data.get("min_confidence_threshold", settings.min_confidence_threshold))
    fuzzy_threshold = float(data.get("fuzzy_match_threshold", settings.fuzzy_match_threshold))
    for label, value in (("min_confidence_threshold", min_confidence), ("fuzzy_match_threshold", fuzzy_threshold)):
        if not 0.0 <= value <= 1.0:
            raise ValidationError(f"{label} must be between 0 and 1")
    max_gap_variation = float(data.get("max_gap_variation", settings.max_gap_variation))
    if max_gap_variation < 0:
        raise ValidationError("max_gap_variation must not be negative")

    weight_values = [float(weights[k]) for k in ("occurrences", "regularity", "rule_match")]
    if any(w < 0 for w in weight_values) or sum(weight_values) <= 0:
        raise ValidationError("confidence_weights must be non-negative and not all zero")
    total = sum(weight_values)

    return DetectionSettings(
        min_confidence_threshold=min_confidence,
        fuzzy_match_threshold=fuzzy_threshold,
        frequency_buckets=_buckets_from_mapping(data.get("frequency_buckets") or settings.frequency_buckets),
        # Normalised so confidence stays within [0, 1]
        occurrence_weight=weight_values[0] / total,
        regularity_weight=weight_values[1] / total,
        rule_match_weight=weight_values[2] / total,
        max_gap_variation=max_gap_variation,
    )


def detection_settings_to_dict(detection_settings: DetectionSettings) -> Dict[str, Any]:
    return {
        "min_confidence_threshold": detection_settings.min_confidence_threshold,
        "fuzzy_match_threshold": detection_settings.fuzzy_match_threshold,
        "max_gap_variation": detection_settings.max_gap_variation,
        "frequency_buckets": {
            b.frequency.value: [b.min_days, b.max_days] for b in detection_settings.frequency_buckets
        },
        "confidence_weights": {
            "occurrences": detection_settings.occurrence_weight,
            "regularity": detection_settings.regularity_weight,
            "rule_match": detection_settings.rule_match_weight,
        },
    }


def category_rule_from_dict(data: Mapping[str, Any]) -> CategoryRule:
    name = (data.get("name") or "").strip()
    patterns = tuple(p.strip() for p in data.get("patterns") or [] if p and p.strip())
    category = (data.get("category") or "").strip()

    if not name:
        raise ValidationError("Category rule name is required")
    if not patterns:
        raise ValidationError(f"Category rule {name!r} needs at least one pattern")
    if not category:
        raise ValidationError(f"Category rule {name!r} needs a category")

    return CategoryRule(
        name=name,
        patterns=patterns,
        category=category,
        subcategory=data.get("subcategory"),
        provider=data.get("provider"),
        active=bool(data.get("active", True)),
    )


def category_rule_to_dict(rule: CategoryRule) -> Dict[str, Any]:
    return {
        "name": rule.name,
        "patterns": list(rule.patterns),
        "category": rule.category,
        "subcategory": rule.subcategory,
        "provider": rule.provider,
        "active": rule.active,
    }


def rule_set_from_dict(
    data: Mapping[str, Any],
    *,
    rule_set_id: Optional[str] = None,
    owner_id: Optional[str] = None,
    is_default: bool = False,
) -> DetectionRuleSet:
    """Validate a stored/submitted rule set and freeze it for detection"""
    name = (data.get("name") or "").strip()
    if not name:
        raise ValidationError("Rule set name is required")

    return DetectionRuleSet(
        id=rule_set_id,
        name=name,
        description=data.get("description"),
        version=str(data.get("version") or "1.0"),
        is_default=is_default,
        owner_id=owner_id,
        category_rules=tuple(category_rule_from_dict(r) for r in data.get("category_rules") or []),
        settings=detection_settings_from_dict(data.get("settings")),
    )


def default_rule_set() -> DetectionRuleSet:
    """Built-in UK rules used to seed the process-wide default"""
    return rule_set_from_dict(
        {
            "name": DEFAULT_RULE_SET_NAME,
            "description": "UK utilities, council tax, telecoms, subscriptions, insurance and finance providers",
            "category_rules": DEFAULT_CATEGORY_RULES,
        },
        is_default=True,
    )
