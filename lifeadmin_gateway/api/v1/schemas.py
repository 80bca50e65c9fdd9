"""Pydantic schemas for API request/response validation"""

from pydantic import BaseModel, Field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional

from lifeadmin_gateway.domain.models import RecurringPaymentSuggestion
from lifeadmin_gateway.infrastructure.database.models import SuggestionRecord
from lifeadmin_gateway.utils.money import from_pence


# Import sessions

class UploadResponse(BaseModel):
    """Response for POST /v1/imports"""

    session_id: str
    status: str
    filename: str


class DuplicateUploadResponse(BaseModel):
    """409 body when the same statement was already uploaded"""

    detail: str = "Statement already uploaded"
    existing_session_id: str
    status: str


class StatusResponse(BaseModel):
    session_id: str
    status: str
    processing_stage: str
    error_message: Optional[str] = None


class StatementPeriod(BaseModel):
    start: Optional[date] = None
    end: Optional[date] = None


class SessionStatistics(BaseModel):
    total_transactions: int
    recurring_detected: int
    date_range_days: int
    total_debits: Decimal
    total_credits: Decimal
    records_created: int


class TransactionSchema(BaseModel):
    index: int
    date: date
    description: str
    amount: Decimal
    balance: Optional[Decimal] = None
    record_created: bool = False
    created_record_id: Optional[str] = None
    created_record_domain: Optional[str] = None


class SuggestedEntrySchema(BaseModel):
    title: str
    provider: str
    type: str


class SuggestionSchema(BaseModel):
    """Recurring payment suggestion as shown to the user"""

    suggestion_index: int
    payee: str
    category: str
    subcategory: Optional[str] = None
    amount: Decimal
    frequency: str
    confidence: float
    low_confidence: bool
    occurrences: int
    transaction_indexes: List[int]
    suggested_entry: SuggestedEntrySchema
    suggested_domain: Optional[str] = None
    domain_confidence: Optional[float] = None
    record_type: Optional[str] = None
    domain_reasoning: Optional[str] = None
    status: str = "pending"

    @classmethod
    def from_record(cls, row: SuggestionRecord) -> "SuggestionSchema":
        return cls(
            suggestion_index=row.position,
            payee=row.payee,
            category=row.category,
            subcategory=row.subcategory,
            amount=from_pence(row.amount_pence),
            frequency=row.frequency,
            confidence=row.confidence,
            low_confidence=row.low_confidence,
            occurrences=row.occurrences,
            transaction_indexes=list(row.transaction_indexes or []),
            suggested_entry=SuggestedEntrySchema(**row.suggested_entry),
            suggested_domain=row.suggested_domain,
            domain_confidence=row.domain_confidence,
            record_type=row.record_type,
            domain_reasoning=row.domain_reasoning,
            status=row.status,
        )

    @classmethod
    def from_domain(cls, index: int, suggestion: RecurringPaymentSuggestion) -> "SuggestionSchema":
        domain = suggestion.domain_suggestion
        return cls(
            suggestion_index=index,
            payee=suggestion.payee,
            category=suggestion.category,
            subcategory=suggestion.subcategory,
            amount=suggestion.amount,
            frequency=suggestion.frequency.value,
            confidence=suggestion.confidence,
            low_confidence=suggestion.low_confidence,
            occurrences=suggestion.occurrences,
            transaction_indexes=list(suggestion.transaction_indexes),
            suggested_entry=SuggestedEntrySchema(
                title=suggestion.suggested_entry.title,
                provider=suggestion.suggested_entry.provider,
                type=suggestion.suggested_entry.type,
            ),
            suggested_domain=domain.domain if domain else None,
            domain_confidence=domain.confidence if domain else None,
            record_type=domain.record_type if domain else None,
            domain_reasoning=domain.reasoning if domain else None,
            status=suggestion.status.value,
        )


class SessionSummary(BaseModel):
    """Row in GET /v1/imports"""

    session_id: str
    filename: str
    status: str
    processing_stage: str
    bank_name: Optional[str] = None
    total_transactions: int
    recurring_detected: int
    created_at: datetime


class SessionResponse(SessionSummary):
    """Response for GET /v1/imports/{session_id}"""

    file_size: int
    rule_set_id: Optional[str] = None
    account_number: Optional[str] = None
    sort_code: Optional[str] = None
    statement_period: StatementPeriod
    statistics: SessionStatistics
    error_message: Optional[str] = None
    expires_at: Optional[datetime] = None
    recurring_payments: List[SuggestionSchema]


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class SessionListResponse(BaseModel):
    sessions: List[SessionSummary]
    pagination: Pagination


class TransactionListResponse(BaseModel):
    session_id: str
    transactions: List[TransactionSchema]
    pagination: Pagination


class MarkProcessedRequest(BaseModel):
    record_id: str = Field(..., min_length=1)
    domain: str = Field(..., min_length=1)


class ConfirmationItem(BaseModel):
    suggestion_index: int
    action: Literal["accept", "reject"]
    modifications: Optional[Dict[str, Any]] = None


class ConfirmRequest(BaseModel):
    """Either per-suggestion confirmations or a bulk action"""

    confirmations: Optional[List[ConfirmationItem]] = None
    bulk_action: Optional[Literal["accept_all", "reject_all"]] = None


class ConfirmResponse(BaseModel):
    created_entries: List[Dict[str, Any]]
    rejected_suggestions: List[Dict[str, Any]]
    skipped: List[Dict[str, Any]]


class CleanupResponse(BaseModel):
    removed: int


# Detection rules

class CategoryRuleSchema(BaseModel):
    name: str = Field(..., min_length=1)
    patterns: List[str] = Field(..., min_length=1)
    category: str = Field(..., min_length=1)
    subcategory: Optional[str] = None
    provider: Optional[str] = None
    active: bool = True


class DetectionSettingsSchema(BaseModel):
    """Omitted values fall back to service configuration"""

    min_confidence_threshold: Optional[float] = Field(None, ge=0, le=1)
    fuzzy_match_threshold: Optional[float] = Field(None, ge=0, le=1)
    max_gap_variation: Optional[float] = Field(None, ge=0)
    frequency_buckets: Optional[Dict[str, List[int]]] = None
    confidence_weights: Optional[Dict[str, float]] = None


class RuleSetRequest(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    version: str = "1.0"
    category_rules: List[CategoryRuleSchema] = []
    settings: Optional[DetectionSettingsSchema] = None


class RuleSetUpdateRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    version: Optional[str] = None
    category_rules: Optional[List[CategoryRuleSchema]] = None
    settings: Optional[DetectionSettingsSchema] = None


class RuleSetResponse(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    version: str
    is_default: bool
    owner_id: Optional[str] = None
    category_rules: List[CategoryRuleSchema]
    settings: Dict[str, Any]


class RuleSetListResponse(BaseModel):
    rule_sets: List[RuleSetResponse]


class AddPatternRequest(BaseModel):
    rule_name: str = Field(..., min_length=1)
    pattern: str = Field(..., min_length=1)


class SampleTransaction(BaseModel):
    date: date
    description: str = Field(..., min_length=1)
    amount: Decimal


class RuleTestRequest(BaseModel):
    """Sample transactions to run through the detector without persisting"""

    rule_set_id: Optional[str] = None
    transactions: List[SampleTransaction] = Field(..., min_length=1)


class RuleTestResponse(BaseModel):
    rule_set_id: Optional[str] = None
    suggestions: List[SuggestionSchema]


# Domain suggestion

class DomainSuggestRequest(BaseModel):
    payee: str = Field(..., min_length=1)
    category: Optional[str] = None
    subcategory: Optional[str] = None
    description: Optional[str] = None


class DomainSuggestionResponse(BaseModel):
    domain: str
    confidence: float
    record_type: str
    reasoning: str


# Renewals

class RenewalItem(BaseModel):
    record_id: str
    title: str
    provider: Optional[str] = None
    domain: str
    end_date: date
    days_until_expiry: int
    urgency_level: str
    stored_urgency_level: str
    reminder_days: List[int]
    next_reminder_due: Optional[datetime] = None
    is_auto_renewal: bool = False
    days_overdue: Optional[int] = None
    severity: Optional[str] = None


class RenewalListResponse(BaseModel):
    renewals: List[RenewalItem]


class TimelineResponse(BaseModel):
    start_date: date
    end_date: date
    months: Dict[str, Dict[str, int]]


class SnoozeRequest(BaseModel):
    days: Optional[int] = Field(None, ge=1, le=365)


class ScheduleRequest(BaseModel):
    reminder_days: Optional[List[int]] = None
    urgency_level: Optional[Literal["critical", "important", "strategic"]] = None
    end_date: Optional[date] = None
    is_active: Optional[bool] = None


class RenewalRecordResponse(BaseModel):
    record_id: str
    title: str
    end_date: Optional[date] = None
    is_active: bool
    urgency_level: str
    reminder_days: List[int]
    next_reminder_due: Optional[datetime] = None
    last_processed_date: Optional[datetime] = None


class ReminderSchema(BaseModel):
    record_id: str
    owner_id: str
    title: str
    subject: str
    reminder_type: str
    urgency_level: str
    days_until_expiry: int
    warnings: List[Dict[str, Any]]
    actions: List[str]


class SweepResponse(BaseModel):
    processed_count: int
    reminders_sent: int
    by_urgency: Dict[str, int]
    errors: List[Dict[str, str]]
    reminders: List[ReminderSchema]
