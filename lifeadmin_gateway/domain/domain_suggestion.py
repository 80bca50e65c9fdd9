"""Domain suggestion engine - maps recurring payments onto life domains"""

import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Pattern, Tuple

from lifeadmin_gateway.domain.models import DomainSuggestion, RecurringPaymentSuggestion

FALLBACK_DOMAIN = "finance"
FALLBACK_CONFIDENCE = 0.3
FALLBACK_RECORD_TYPE = "other"


@dataclass(frozen=True)
class DomainRule:
    """
    One row of the ordered keyword table.

    A rule fires when any keyword occurs on word boundaries in the payee text,
    or the payment category is listed in `categories`. When `secondary` is
    set, one of those keywords must also be present.
    """

    domain: str
    record_type: str
    confidence: float
    keywords: Tuple[str, ...] = ()
    categories: Tuple[str, ...] = ()
    secondary: Tuple[str, ...] = ()

    def _pattern(self, words: Iterable[str]) -> Optional[Pattern[str]]:
        words = list(words)
        if not words:
            return None
        alternatives = "|".join(re.escape(w) for w in sorted(words, key=len, reverse=True))
        return re.compile(rf"(?<!\w)(?:{alternatives})(?!\w)")

    def match(self, text: str, category: str) -> Optional[str]:
        """Return the reason this rule fired, or None"""
        reason = None
        keyword_re = self._pattern(self.keywords)
        found = keyword_re.search(text) if keyword_re else None
        if found:
            reason = f"keyword match: {found.group(0)!r}"
        elif category in self.categories:
            reason = f"category match: {category!r}"
        if reason is None:
            return None

        if self.secondary:
            secondary_re = self._pattern(self.secondary)
            extra = secondary_re.search(text)
            if not extra:
                return None
            reason = f"{reason} with {extra.group(0)!r}"
        return reason


# Order matters: the first rule that fires wins
DOMAIN_RULES: Tuple[DomainRule, ...] = (
    # Vehicles
    DomainRule("vehicles", "insurance", 0.9, categories=("insurance",),
               secondary=("car", "motor", "vehicle", "van")),
    DomainRule("vehicles", "insurance", 0.85, keywords=(
        "car insurance", "motor insurance", "admiral", "churchill", "esure", "hastings direct",
    )),
    DomainRule("vehicles", "finance", 0.9, keywords=(
        "black horse", "blackhorse", "motonovo", "car finance", "car_finance", "pcp",
    )),
    DomainRule("vehicles", "road-tax", 0.9, keywords=("dvla", "road tax", "vehicle tax")),
    DomainRule("vehicles", "mot", 0.8, keywords=("mot test", "kwik fit", "halfords", "servicing")),
    DomainRule("vehicles", "fuel", 0.7, keywords=("petrol", "diesel", "fuel", "esso")),
    # Property
    DomainRule("property", "home-insurance", 0.9, categories=("insurance",),
               secondary=("home", "buildings", "contents")),
    DomainRule("property", "utility-gas", 0.95, keywords=("british gas", "bg energy", "gas")),
    DomainRule("property", "utility-electric", 0.95, keywords=(
        "electricity", "electric", "edf", "e.on", "eon", "octopus energy", "ovo", "scottish power",
        "sse", "energy",
    )),
    DomainRule("property", "utility-water", 0.95, keywords=(
        "water", "sewerage", "thames water", "severn trent", "united utilities", "anglian water",
    )),
    DomainRule("property", "council-tax", 0.95, categories=("council_tax",), keywords=(
        "council tax", "council_tax", "borough council", "city council", "county council",
    )),
    DomainRule("property", "utility-broadband", 0.85, keywords=(
        "broadband", "internet", "bt", "virgin media", "talktalk", "plusnet",
    )),
    DomainRule("property", "mortgage", 0.95, categories=("mortgage",), keywords=("mortgage",)),
    DomainRule("property", "rent", 0.85, categories=("rent",), keywords=("rent", "letting agent", "lettings")),
    DomainRule("property", "utility", 0.75, categories=("utilities",)),
    # Government
    DomainRule("government", "tv-licence", 0.95, keywords=("tv licence", "tv licensing", "tvl", "tv_licence")),
    DomainRule("government", "tax-return", 0.9, keywords=("hmrc", "self assessment")),
    DomainRule("government", "passport", 0.9, keywords=("passport office", "hm passport")),
    # Insurance
    DomainRule("insurance", "life-insurance", 0.9, keywords=(
        "life insurance", "life cover", "legal & general", "legal and general", "scottish widows",
    )),
    DomainRule("insurance", "life-insurance", 0.9, categories=("insurance",), secondary=("life",)),
    DomainRule("insurance", "health-insurance", 0.9, keywords=(
        "bupa", "vitality", "health insurance", "simplyhealth",
    )),
    DomainRule("insurance", "pet-insurance", 0.9, keywords=("pet insurance", "petplan")),
    DomainRule("insurance", "travel-insurance", 0.9, keywords=("travel insurance",)),
    DomainRule("insurance", "insurance", 0.75, categories=("insurance",), keywords=("insurance",)),
    # Services
    DomainRule("services", "subscription", 0.9, categories=("subscription",), keywords=(
        "netflix", "spotify", "amazon prime", "prime video", "disney", "apple tv", "youtube premium",
        "streaming",
    )),
    DomainRule("services", "membership", 0.85, keywords=(
        "puregym", "pure gym", "gym", "david lloyd", "virgin active", "membership",
    )),
    DomainRule("services", "mobile", 0.8, categories=("telecoms",), keywords=(
        "vodafone", "ee", "o2", "giffgaff", "mobile",
    )),
    # Employment
    DomainRule("employment", "salary", 0.9, keywords=("salary", "wages", "payroll")),
    DomainRule("employment", "pension", 0.85, keywords=("pension",)),
    # Legal
    DomainRule("legal", "legal-service", 0.85, keywords=(
        "solicitor", "solicitors", "legal services", "will writing", "conveyancing", "probate",
    )),
    # Finance
    DomainRule("finance", "loan", 0.85, categories=("loan",), keywords=("loan", "zopa", "vanquis")),
    DomainRule("finance", "credit-card", 0.85, keywords=(
        "credit card", "amex", "american express", "barclaycard", "mbna", "capital one",
    )),
    DomainRule("finance", "savings", 0.75, keywords=("savings", "isa")),
)


def suggest_domain(
    payee: str,
    category: Optional[str] = None,
    subcategory: Optional[str] = None,
    description: Optional[str] = None,
) -> DomainSuggestion:
    """
    Suggest the life domain and record type for a payment.

    Deterministic and side-effect free; the same table backs the import
    flow and the live suggestion endpoint.
    """
    text = " ".join(part for part in (payee, description, subcategory) if part).casefold()
    category_key = (category or "").casefold()

    for rule in DOMAIN_RULES:
        reason = rule.match(text, category_key)
        if reason:
            return DomainSuggestion(
                domain=rule.domain,
                confidence=rule.confidence,
                record_type=rule.record_type,
                reasoning=reason,
            )

    return DomainSuggestion(
        domain=FALLBACK_DOMAIN,
        confidence=FALLBACK_CONFIDENCE,
        record_type=FALLBACK_RECORD_TYPE,
        reasoning="Default (no specific match found)",
    )


def attach_domain_suggestions(suggestions: List[RecurringPaymentSuggestion]) -> List[RecurringPaymentSuggestion]:
    """Stamp each detector suggestion with its domain suggestion, in place"""
    for suggestion in suggestions:
        suggestion.domain_suggestion = suggest_domain(
            payee=suggestion.payee,
            category=suggestion.category,
            subcategory=suggestion.subcategory,
            description=suggestion.suggested_entry.provider,
        )
    return suggestions
