"""Domain models - pure Python dataclasses representing business entities"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional, Tuple


class SessionStatus(str, Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ProcessingStage(str, Enum):
    BANK_IDENTIFICATION = "bank_identification"
    TRANSACTION_EXTRACTION = "transaction_extraction"
    PATTERN_DETECTION = "pattern_detection"
    SUGGESTION_GENERATION = "suggestion_generation"


class Frequency(str, Enum):
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    ANNUAL = "annual"
    ONE_TIME = "one_time"


class SuggestionStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class MatchStrength(str, Enum):
    EXACT = "exact"
    FUZZY = "fuzzy"
    NONE = "none"


class UrgencyLevel(str, Enum):
    CRITICAL = "critical"
    IMPORTANT = "important"
    STRATEGIC = "strategic"


UNCATEGORIZED = "uncategorized"
UNKNOWN_BANK = "Unknown"
BANK_IMPORT_SOURCE = "bank_import"

LIFE_DOMAINS = (
    "property",
    "vehicles",
    "finance",
    "employment",
    "government",
    "insurance",
    "legal",
    "services",
)


@dataclass(frozen=True)
class Principal:
    """Authenticated caller handed to every service operation"""

    id: str
    role: str = "user"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


@dataclass(frozen=True)
class Transaction:
    """Single statement line after extraction"""

    date: date
    description: str
    amount: Decimal  # negative for debits
    original_text: str
    balance: Optional[Decimal] = None

    @property
    def is_debit(self) -> bool:
        return self.amount < 0


@dataclass(frozen=True)
class ParsedStatement:
    """Raw text lines decoded from a statement PDF"""

    lines: Tuple[str, ...]
    bank_name: str
    page_count: int


@dataclass(frozen=True)
class ExtractionResult:
    """Transactions plus statement-level metadata"""

    transactions: Tuple[Transaction, ...]
    account_number: Optional[str] = None
    sort_code: Optional[str] = None
    period_start: Optional[date] = None
    period_end: Optional[date] = None


@dataclass(frozen=True)
class CategoryRule:
    """Payee patterns that assign a category and provider"""

    name: str
    patterns: Tuple[str, ...]
    category: str
    subcategory: Optional[str] = None
    provider: Optional[str] = None
    active: bool = True


@dataclass(frozen=True)
class FrequencyBucket:
    """Inclusive range of day-gaps that maps to a frequency"""

    frequency: Frequency
    min_days: int
    max_days: int

    def contains(self, gap_days: int) -> bool:
        return self.min_days <= gap_days <= self.max_days


@dataclass(frozen=True)
class DetectionSettings:
    """Thresholds and weights consumed by the detector"""

    min_confidence_threshold: float
    fuzzy_match_threshold: float
    frequency_buckets: Tuple[FrequencyBucket, ...]
    occurrence_weight: float
    regularity_weight: float
    rule_match_weight: float
    max_gap_variation: float


@dataclass(frozen=True)
class DetectionRuleSet:
    """Immutable snapshot of a rule set used for one detection pass"""

    name: str
    category_rules: Tuple[CategoryRule, ...]
    settings: DetectionSettings
    is_default: bool = False
    owner_id: Optional[str] = None
    id: Optional[str] = None
    version: str = "1.0"
    description: Optional[str] = None


@dataclass(frozen=True)
class RuleMatch:
    """Outcome of matching a payee against the category rules"""

    rule: Optional[CategoryRule]
    strength: MatchStrength
    score: float
    matched_pattern: Optional[str] = None


@dataclass
class SuggestedEntry:
    title: str
    provider: str
    type: str


@dataclass
class DomainSuggestion:
    """Target life domain for a recurring payment"""

    domain: str
    confidence: float
    record_type: str
    reasoning: str


@dataclass
class RecurringPaymentSuggestion:
    """Recurring commitment detected in a statement"""

    payee: str
    category: str
    amount: Decimal
    frequency: Frequency
    confidence: float
    occurrences: int
    suggested_entry: SuggestedEntry
    subcategory: Optional[str] = None
    low_confidence: bool = False
    transaction_indexes: List[int] = field(default_factory=list)
    domain_suggestion: Optional[DomainSuggestion] = None
    status: SuggestionStatus = SuggestionStatus.PENDING


@dataclass
class RenewalInfo:
    """Renewal tracking block carried by a domain record"""

    end_date: Optional[date]
    is_active: bool = True
    urgency_level: UrgencyLevel = UrgencyLevel.IMPORTANT
    reminder_days: List[int] = field(default_factory=lambda: [30, 7])
    regulatory_type: Optional[str] = None
    notice_period_days: Optional[int] = None
    is_auto_renewal: bool = False
    requires_action: bool = False
    next_reminder_due: Optional[datetime] = None
    last_processed_date: Optional[datetime] = None


@dataclass
class RenewalReminder:
    """Reminder due for a record on a given day"""

    record_id: str
    owner_id: str
    title: str
    days_until_expiry: int
    urgency_level: UrgencyLevel
    reminder_type: str
    subject: str
    warnings: List[dict] = field(default_factory=list)
    actions: List[str] = field(default_factory=list)
