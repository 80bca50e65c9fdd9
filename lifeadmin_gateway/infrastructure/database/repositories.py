"""Data access layer for import sessions, rule sets and domain records"""

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from lifeadmin_gateway.config import settings
from lifeadmin_gateway.domain.models import (
    DetectionRuleSet,
    ProcessingStage,
    RecurringPaymentSuggestion,
    RenewalInfo,
    SessionStatus,
    SuggestionStatus,
    Transaction,
    UrgencyLevel,
)
from lifeadmin_gateway.domain.rules import category_rule_to_dict, detection_settings_to_dict, rule_set_from_dict
from lifeadmin_gateway.infrastructure.database.models import (
    DetectionRuleSetRecord,
    DomainRecord,
    ImportSessionRecord,
    StatementTransaction,
    SuggestionRecord,
)
from lifeadmin_gateway.utils.money import to_pence


def to_rule_set(row: DetectionRuleSetRecord) -> DetectionRuleSet:
    """Freeze a stored rule set into the snapshot consumed by detection"""
    return rule_set_from_dict(
        {
            "name": row.name,
            "description": row.description,
            "version": row.version,
            "category_rules": row.category_rules,
            "settings": row.settings,
        },
        rule_set_id=str(row.id),
        owner_id=row.owner_id,
        is_default=row.is_default,
    )


def to_renewal_info(row: DomainRecord) -> RenewalInfo:
    return RenewalInfo(
        end_date=row.renewal_end_date,
        is_active=row.renewal_is_active,
        urgency_level=UrgencyLevel(row.urgency_level or UrgencyLevel.IMPORTANT),
        reminder_days=list(row.reminder_days or settings.default_reminder_days),
        regulatory_type=row.regulatory_type,
        notice_period_days=row.notice_period_days,
        is_auto_renewal=row.is_auto_renewal,
        requires_action=row.requires_action,
        next_reminder_due=row.next_reminder_due,
        last_processed_date=row.last_processed_date,
    )


class ImportSessionRepository:
    """Repository for import sessions and their embedded transactions/suggestions"""

    def __init__(self, db: Session):
        self.db = db

    def create(
        self,
        owner_id: str,
        filename: str,
        file_size: int,
        content_hash: str,
        blob_key: str,
        rule_set_id: Optional[uuid.UUID],
        expires_at: datetime,
    ) -> ImportSessionRecord:
        record = ImportSessionRecord(
            owner_id=owner_id,
            filename=filename,
            file_size=file_size,
            content_hash=content_hash,
            blob_key=blob_key,
            rule_set_id=rule_set_id,
            status=SessionStatus.PROCESSING.value,
            processing_stage=ProcessingStage.BANK_IDENTIFICATION.value,
            expires_at=expires_at,
        )
        self.db.add(record)
        self.db.flush()  # Get ID without committing
        return record

    def get(self, session_id: uuid.UUID) -> Optional[ImportSessionRecord]:
        return self.db.get(ImportSessionRecord, session_id)

    def find_by_hash(self, owner_id: str, content_hash: str) -> Optional[ImportSessionRecord]:
        return (
            self.db.query(ImportSessionRecord)
            .filter(ImportSessionRecord.owner_id == owner_id, ImportSessionRecord.content_hash == content_hash)
            .first()
        )

    def list_for_owner(
        self,
        owner_id: str,
        page: int = 1,
        limit: int = 20,
        status: Optional[str] = None,
    ) -> Tuple[List[ImportSessionRecord], int]:
        """Newest first, with total count for pagination"""
        query = self.db.query(ImportSessionRecord).filter(ImportSessionRecord.owner_id == owner_id)
        if status:
            query = query.filter(ImportSessionRecord.status == status)

        total = query.count()
        rows = (
            query.order_by(ImportSessionRecord.created_at.desc(), ImportSessionRecord.id)
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return rows, total

    def set_stage(self, record: ImportSessionRecord, stage: ProcessingStage) -> None:
        record.processing_stage = stage.value

    def mark_failed(self, record: ImportSessionRecord, message: str) -> None:
        record.status = SessionStatus.FAILED.value
        record.error_message = message

    def mark_completed(self, record: ImportSessionRecord) -> None:
        record.status = SessionStatus.COMPLETED.value
        record.error_message = None

    def reset_for_retry(self, record: ImportSessionRecord) -> None:
        """Wipe previous partial results so the pipeline can run again"""
        record.transactions.clear()
        record.suggestions.clear()
        record.status = SessionStatus.PROCESSING.value
        record.processing_stage = ProcessingStage.BANK_IDENTIFICATION.value
        record.error_message = None
        record.bank_name = None
        record.account_number = None
        record.sort_code = None
        record.period_start = None
        record.period_end = None
        record.total_transactions = 0
        record.recurring_detected = 0
        record.date_range_days = 0
        record.total_debits_pence = 0
        record.total_credits_pence = 0
        self.db.flush()

    def add_transactions(self, record: ImportSessionRecord, transactions: Sequence[Transaction]) -> None:
        for position, txn in enumerate(transactions):
            record.transactions.append(
                StatementTransaction(
                    position=position,
                    txn_date=txn.date,
                    description=txn.description,
                    amount_pence=to_pence(txn.amount),
                    balance_pence=to_pence(txn.balance) if txn.balance is not None else None,
                    original_text=txn.original_text,
                )
            )
        self.db.flush()

    def add_suggestions(self, record: ImportSessionRecord, suggestions: Sequence[RecurringPaymentSuggestion]) -> None:
        for position, suggestion in enumerate(suggestions):
            domain = suggestion.domain_suggestion
            record.suggestions.append(
                SuggestionRecord(
                    position=position,
                    payee=suggestion.payee,
                    category=suggestion.category,
                    subcategory=suggestion.subcategory,
                    amount_pence=to_pence(suggestion.amount),
                    frequency=suggestion.frequency.value,
                    confidence=suggestion.confidence,
                    low_confidence=suggestion.low_confidence,
                    occurrences=suggestion.occurrences,
                    transaction_indexes=list(suggestion.transaction_indexes),
                    suggested_entry={
                        "title": suggestion.suggested_entry.title,
                        "provider": suggestion.suggested_entry.provider,
                        "type": suggestion.suggested_entry.type,
                    },
                    suggested_domain=domain.domain if domain else None,
                    domain_confidence=domain.confidence if domain else None,
                    record_type=domain.record_type if domain else None,
                    domain_reasoning=domain.reasoning if domain else None,
                    status=suggestion.status.value,
                )
            )
        self.db.flush()

    def transition_suggestion(
        self,
        suggestion_id: uuid.UUID,
        new_status: SuggestionStatus,
        modifications: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """
        Compare-and-set a pending suggestion to accepted/rejected.

        Returns:
            True when this caller won the transition, False when the
            suggestion had already left `pending`
        """
        result = self.db.execute(
            update(SuggestionRecord)
            .where(
                SuggestionRecord.id == suggestion_id,
                SuggestionRecord.status == SuggestionStatus.PENDING.value,
            )
            .values(status=new_status.value, user_modifications=modifications)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def link_created_record(
        self,
        suggestion: SuggestionRecord,
        record_id: uuid.UUID,
        domain: str,
    ) -> None:
        """Point the suggestion and its source transactions at the created record"""
        self.db.execute(
            update(SuggestionRecord)
            .where(SuggestionRecord.id == suggestion.id)
            .values(created_record_id=record_id)
            .execution_options(synchronize_session=False)
        )
        positions = list(suggestion.transaction_indexes or [])
        if positions:
            self.db.execute(
                update(StatementTransaction)
                .where(
                    StatementTransaction.session_id == suggestion.session_id,
                    StatementTransaction.position.in_(positions),
                )
                .values(record_created=True, created_record_id=record_id, created_record_domain=domain)
                .execution_options(synchronize_session=False)
            )

    def increment_records_created(self, session_id: uuid.UUID, count: int) -> None:
        self.db.execute(
            update(ImportSessionRecord)
            .where(ImportSessionRecord.id == session_id)
            .values(records_created=ImportSessionRecord.records_created + count)
            .execution_options(synchronize_session=False)
        )

    def list_transactions(
        self,
        session_id: uuid.UUID,
        page: int = 1,
        limit: int = 50,
    ) -> Tuple[List[StatementTransaction], int]:
        query = self.db.query(StatementTransaction).filter(StatementTransaction.session_id == session_id)
        total = query.count()
        rows = query.order_by(StatementTransaction.position).offset((page - 1) * limit).limit(limit).all()
        return rows, total

    def get_transaction(self, session_id: uuid.UUID, position: int) -> Optional[StatementTransaction]:
        return (
            self.db.query(StatementTransaction)
            .filter(StatementTransaction.session_id == session_id, StatementTransaction.position == position)
            .first()
        )

    def find_expired(self, now: datetime) -> List[ImportSessionRecord]:
        return (
            self.db.query(ImportSessionRecord)
            .filter(ImportSessionRecord.expires_at.isnot(None), ImportSessionRecord.expires_at < now)
            .all()
        )

    def completed_for_owner(self, owner_id: str) -> List[ImportSessionRecord]:
        return (
            self.db.query(ImportSessionRecord)
            .filter(
                ImportSessionRecord.owner_id == owner_id,
                ImportSessionRecord.status == SessionStatus.COMPLETED.value,
            )
            .all()
        )

    def delete(self, record: ImportSessionRecord) -> None:
        self.db.delete(record)
        self.db.flush()


class RuleSetRepository:
    """Repository for detection rule sets"""

    def __init__(self, db: Session):
        self.db = db

    def get(self, rule_set_id: uuid.UUID) -> Optional[DetectionRuleSetRecord]:
        return self.db.get(DetectionRuleSetRecord, rule_set_id)

    def get_default(self) -> Optional[DetectionRuleSetRecord]:
        return self.db.query(DetectionRuleSetRecord).filter(DetectionRuleSetRecord.is_default.is_(True)).first()

    def list_for_owner(self, owner_id: str) -> List[DetectionRuleSetRecord]:
        """Owner's rule sets plus the shared default"""
        return (
            self.db.query(DetectionRuleSetRecord)
            .filter(
                (DetectionRuleSetRecord.owner_id == owner_id) | DetectionRuleSetRecord.is_default.is_(True)
            )
            .order_by(DetectionRuleSetRecord.is_default.desc(), DetectionRuleSetRecord.name)
            .all()
        )

    def create(self, rule_set: DetectionRuleSet) -> DetectionRuleSetRecord:
        record = DetectionRuleSetRecord(
            name=rule_set.name,
            description=rule_set.description,
            version=rule_set.version,
            is_default=rule_set.is_default,
            owner_id=rule_set.owner_id,
            category_rules=[category_rule_to_dict(r) for r in rule_set.category_rules],
            settings=detection_settings_to_dict(rule_set.settings),
        )
        self.db.add(record)
        self.db.flush()
        return record

    def replace(self, record: DetectionRuleSetRecord, rule_set: DetectionRuleSet) -> DetectionRuleSetRecord:
        record.name = rule_set.name
        record.description = rule_set.description
        record.version = rule_set.version
        record.category_rules = [category_rule_to_dict(r) for r in rule_set.category_rules]
        record.settings = detection_settings_to_dict(rule_set.settings)
        self.db.flush()
        return record

    def delete(self, record: DetectionRuleSetRecord) -> None:
        self.db.delete(record)
        self.db.flush()


class DomainRecordRepository:
    """Domain record store: create, find_by_id, update, count_referencing"""

    def __init__(self, db: Session):
        self.db = db

    def create(
        self,
        owner_id: str,
        domain: str,
        fields: Dict[str, Any],
        record_type: str = "other",
        import_session_id: Optional[uuid.UUID] = None,
        import_metadata: Optional[Dict[str, Any]] = None,
        renewal: Optional[RenewalInfo] = None,
    ) -> DomainRecord:
        record = DomainRecord(
            owner_id=owner_id,
            domain=domain,
            record_type=record_type,
            title=fields.get("title") or "Untitled",
            provider=fields.get("provider"),
            fields=fields,
            import_session_id=import_session_id,
            import_metadata=import_metadata,
        )
        if renewal is not None:
            self._apply_renewal(record, renewal)
        self.db.add(record)
        self.db.flush()
        return record

    def find_by_id(self, record_id: uuid.UUID) -> Optional[DomainRecord]:
        return self.db.get(DomainRecord, record_id)

    def update(self, record: DomainRecord, **changes: Any) -> DomainRecord:
        for name, value in changes.items():
            setattr(record, name, value)
        self.db.flush()
        return record

    def count_referencing(self, session_id: uuid.UUID) -> int:
        return (
            self.db.query(func.count(DomainRecord.id))
            .filter(DomainRecord.import_session_id == session_id)
            .scalar()
        )

    def active_renewals(self, owner_id: Optional[str] = None) -> List[DomainRecord]:
        """Records with renewal tracking on, soonest end date first"""
        query = self.db.query(DomainRecord).filter(
            DomainRecord.renewal_is_active.is_(True),
            DomainRecord.renewal_end_date.isnot(None),
        )
        if owner_id is not None:
            query = query.filter(DomainRecord.owner_id == owner_id)
        return query.order_by(DomainRecord.renewal_end_date).all()

    @staticmethod
    def _apply_renewal(record: DomainRecord, renewal: RenewalInfo) -> None:
        record.renewal_end_date = renewal.end_date
        record.renewal_is_active = renewal.is_active
        record.urgency_level = UrgencyLevel(renewal.urgency_level).value
        record.reminder_days = list(renewal.reminder_days)
        record.regulatory_type = renewal.regulatory_type
        record.notice_period_days = renewal.notice_period_days
        record.is_auto_renewal = renewal.is_auto_renewal
        record.requires_action = renewal.requires_action
        record.next_reminder_due = renewal.next_reminder_due
        record.last_processed_date = renewal.last_processed_date
