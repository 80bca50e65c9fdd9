"""Import session operations - upload, query, confirm, delete"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from lifeadmin_gateway.config import settings
from lifeadmin_gateway.domain.domain_suggestion import suggest_domain
from lifeadmin_gateway.domain.exceptions import (
    ForbiddenError,
    HasAssociatedEntriesError,
    InvalidIndexError,
    NotFoundError,
    SessionNotReadyError,
    ValidationError,
)
from lifeadmin_gateway.domain.models import (
    BANK_IMPORT_SOURCE,
    LIFE_DOMAINS,
    Principal,
    SessionStatus,
    SuggestionStatus,
)
from lifeadmin_gateway.infrastructure.database.models import (
    ImportSessionRecord,
    StatementTransaction,
    SuggestionRecord,
)
from lifeadmin_gateway.infrastructure.database.repositories import (
    DomainRecordRepository,
    ImportSessionRepository,
)
from lifeadmin_gateway.infrastructure.observability.metrics import record_confirmation, record_import
from lifeadmin_gateway.infrastructure.storage.blobs import BlobStore, content_hash
from lifeadmin_gateway.services.rules import RuleSetService
from lifeadmin_gateway.utils.date_utils import utcnow
from lifeadmin_gateway.utils.ids import parse_uuid
from lifeadmin_gateway.utils.money import from_pence

logger = logging.getLogger(__name__)

ACCEPT = "accept"
REJECT = "reject"
BULK_ACTIONS = {"accept_all": ACCEPT, "reject_all": REJECT}
ENTRY_OVERRIDES = ("title", "provider", "type", "notes")


@dataclass
class UploadOutcome:
    """Result of an upload; `duplicate` carries the existing session instead of an error"""

    session_id: uuid.UUID
    status: str
    filename: str
    duplicate: bool = False
    needs_processing: bool = False


@dataclass
class Confirmation:
    suggestion_index: int
    action: str
    modifications: Optional[Dict[str, Any]] = None


@dataclass
class ConfirmResult:
    created_entries: List[Dict[str, Any]] = field(default_factory=list)
    rejected_suggestions: List[Dict[str, Any]] = field(default_factory=list)
    skipped: List[Dict[str, Any]] = field(default_factory=list)


class ImportService:
    """Import session operations, each taking the authenticated principal explicitly"""

    def __init__(self, db: Session, blob_store: BlobStore):
        self.db = db
        self.blob_store = blob_store
        self.sessions = ImportSessionRepository(db)
        self.records = DomainRecordRepository(db)

    # Ownership

    def _owned_session(self, session_id: Any, principal: Principal) -> ImportSessionRecord:
        record = self.sessions.get(parse_uuid(session_id, "Import session"))
        if record is None:
            raise NotFoundError(f"Import session {session_id} not found")
        if record.owner_id != principal.id and not principal.is_admin:
            raise ForbiddenError("Import session belongs to another user")
        return record

    # Upload

    def upload_statement(
        self,
        principal: Principal,
        data: bytes,
        filename: str,
        rule_set_id: Optional[Any] = None,
    ) -> UploadOutcome:
        """
        Register an uploaded statement for processing.

        Byte-identical content for the same owner returns the existing
        session as a duplicate. A previously failed session for the same
        content is reset and handed back for another run.
        """
        if not data:
            raise ValidationError("Uploaded file is empty")
        if len(data) > settings.max_upload_bytes:
            raise ValidationError(f"File exceeds maximum size of {settings.max_upload_bytes} bytes")

        resolved_rule_set = None
        if rule_set_id is not None:
            resolved_rule_set = RuleSetService(self.db).get_rule_set(rule_set_id, principal).id

        digest = content_hash(data)
        existing = self.sessions.find_by_hash(principal.id, digest)
        if existing is not None:
            return self._existing_outcome(existing, data, resolved_rule_set)

        blob_key = self.blob_store.put(data, principal.id, filename)
        try:
            record = self.sessions.create(
                owner_id=principal.id,
                filename=filename,
                file_size=len(data),
                content_hash=digest,
                blob_key=blob_key,
                rule_set_id=resolved_rule_set,
                expires_at=utcnow() + timedelta(days=settings.session_ttl_days),
            )
            self.db.commit()
        except IntegrityError:
            # Lost a race with a concurrent identical upload
            self.db.rollback()
            self.blob_store.delete(blob_key)
            existing = self.sessions.find_by_hash(principal.id, digest)
            if existing is None:
                raise
            return self._existing_outcome(existing, data, resolved_rule_set)

        logger.info(
            "Statement uploaded",
            extra={"session_id": str(record.id), "owner_id": principal.id, "file_size": len(data)},
        )
        return UploadOutcome(
            session_id=record.id,
            status=record.status,
            filename=record.filename,
            needs_processing=True,
        )

    def _existing_outcome(
        self,
        existing: ImportSessionRecord,
        data: bytes,
        rule_set_id: Optional[uuid.UUID],
    ) -> UploadOutcome:
        if existing.status != SessionStatus.FAILED.value:
            record_import("duplicate")
            logger.info("Duplicate upload", extra={"session_id": str(existing.id), "owner_id": existing.owner_id})
            return UploadOutcome(
                session_id=existing.id,
                status=existing.status,
                filename=existing.filename,
                duplicate=True,
            )

        self._reset(existing, data)
        if rule_set_id is not None:
            existing.rule_set_id = rule_set_id
        self.db.commit()
        logger.info("Failed session re-queued by re-upload", extra={"session_id": str(existing.id)})
        return UploadOutcome(
            session_id=existing.id,
            status=existing.status,
            filename=existing.filename,
            needs_processing=True,
        )

    def _reset(self, record: ImportSessionRecord, data: Optional[bytes] = None) -> None:
        if data is not None:
            if record.blob_key:
                self.blob_store.delete(record.blob_key)
            record.blob_key = self.blob_store.put(data, record.owner_id, record.filename)
        self.sessions.reset_for_retry(record)
        record.expires_at = utcnow() + timedelta(days=settings.session_ttl_days)

    def retry_session(self, session_id: Any, principal: Principal) -> ImportSessionRecord:
        """Re-run a failed session from its stored blob"""
        record = self._owned_session(session_id, principal)
        if record.status != SessionStatus.FAILED.value:
            raise ValidationError("Only failed import sessions can be retried")
        self._reset(record)
        self.db.commit()
        return record

    # Queries

    def get_session(self, session_id: Any, principal: Principal) -> ImportSessionRecord:
        return self._owned_session(session_id, principal)

    def get_status(self, session_id: Any, principal: Principal) -> Dict[str, Any]:
        record = self._owned_session(session_id, principal)
        return {
            "session_id": str(record.id),
            "status": record.status,
            "processing_stage": record.processing_stage,
            "error_message": record.error_message,
        }

    def list_sessions(
        self,
        principal: Principal,
        page: int = 1,
        limit: int = 20,
        status: Optional[str] = None,
    ) -> Tuple[List[ImportSessionRecord], Dict[str, int]]:
        if page < 1 or not 1 <= limit <= 100:
            raise ValidationError("page must be >= 1 and limit between 1 and 100")
        if status is not None and status not in {s.value for s in SessionStatus}:
            raise ValidationError(f"Unknown session status: {status}")

        rows, total = self.sessions.list_for_owner(principal.id, page=page, limit=limit, status=status)
        pagination = {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": (total + limit - 1) // limit,
        }
        return rows, pagination

    def list_transactions(
        self,
        session_id: Any,
        principal: Principal,
        page: int = 1,
        limit: int = 50,
    ) -> Tuple[List[StatementTransaction], Dict[str, int]]:
        record = self._owned_session(session_id, principal)
        if page < 1 or not 1 <= limit <= 500:
            raise ValidationError("page must be >= 1 and limit between 1 and 500")
        rows, total = self.sessions.list_transactions(record.id, page=page, limit=limit)
        return rows, {"page": page, "limit": limit, "total": total, "pages": (total + limit - 1) // limit}

    def mark_transaction_processed(
        self,
        session_id: Any,
        principal: Principal,
        transaction_index: int,
        record_id: Any,
        domain: str,
    ) -> StatementTransaction:
        """Link a statement transaction to a domain record created outside the confirm flow"""
        record = self._owned_session(session_id, principal)
        if domain not in LIFE_DOMAINS:
            raise ValidationError(f"Unknown domain: {domain}")

        target = self.records.find_by_id(parse_uuid(record_id, "Domain record"))
        if target is None:
            raise NotFoundError(f"Domain record {record_id} not found")
        if target.owner_id != principal.id:
            raise ForbiddenError("Domain record belongs to another user")

        transaction = self.sessions.get_transaction(record.id, transaction_index)
        if transaction is None:
            raise InvalidIndexError(transaction_index, record.total_transactions)

        transaction.record_created = True
        transaction.created_record_id = target.id
        transaction.created_record_domain = domain
        self.db.commit()
        return transaction

    # Confirm

    def _resolve_confirmations(
        self,
        suggestions: Sequence[SuggestionRecord],
        confirmations: Optional[Sequence[Confirmation]],
        bulk_action: Optional[str],
    ) -> List[Confirmation]:
        """Validate every item before anything is written"""
        if bulk_action is not None:
            if bulk_action not in BULK_ACTIONS:
                raise ValidationError(f"Unknown bulk action: {bulk_action}")
            return [Confirmation(row.position, BULK_ACTIONS[bulk_action]) for row in suggestions]

        if not confirmations:
            raise ValidationError("Provide confirmations or a bulk_action")

        seen = set()
        for item in confirmations:
            if not 0 <= item.suggestion_index < len(suggestions):
                raise InvalidIndexError(item.suggestion_index, len(suggestions))
            if item.suggestion_index in seen:
                raise ValidationError(f"Suggestion {item.suggestion_index} listed more than once")
            seen.add(item.suggestion_index)
            if item.action not in (ACCEPT, REJECT):
                raise ValidationError(f"Unknown action: {item.action}")
            domain = (item.modifications or {}).get("domain")
            if domain is not None and domain not in LIFE_DOMAINS:
                raise ValidationError(f"Unknown domain: {domain}")
        return list(confirmations)

    def confirm_suggestions(
        self,
        session_id: Any,
        principal: Principal,
        confirmations: Optional[Sequence[Confirmation]] = None,
        bulk_action: Optional[str] = None,
    ) -> ConfirmResult:
        """
        Accept or reject suggestions.

        Every index is validated up front so an invalid item writes nothing.
        Each transition is a compare-and-set from `pending`; a suggestion
        already decided (for example by a concurrent call) is reported in
        `skipped` and never creates a second record.
        """
        record = self._owned_session(session_id, principal)
        if record.status != SessionStatus.COMPLETED.value:
            raise SessionNotReadyError(f"Import session is {record.status}, not completed")

        suggestions = list(record.suggestions)
        items = self._resolve_confirmations(suggestions, confirmations, bulk_action)
        result = ConfirmResult()
        now = utcnow()

        for item in items:
            row = suggestions[item.suggestion_index]

            if item.action == REJECT:
                if self.sessions.transition_suggestion(row.id, SuggestionStatus.REJECTED):
                    result.rejected_suggestions.append({"suggestion_index": row.position, "payee": row.payee})
                    record_confirmation(REJECT)
                else:
                    result.skipped.append({"suggestion_index": row.position, "reason": "already_decided"})
                    record_confirmation("skipped")
                continue

            if not self.sessions.transition_suggestion(row.id, SuggestionStatus.ACCEPTED, item.modifications):
                result.skipped.append({"suggestion_index": row.position, "reason": "already_decided"})
                record_confirmation("skipped")
                continue

            created = self._create_record(record, row, item.modifications or {}, now)
            self.sessions.link_created_record(row, created.id, created.domain)
            result.created_entries.append({
                "suggestion_index": row.position,
                "record_id": str(created.id),
                "domain": created.domain,
                "record_type": created.record_type,
                "title": created.title,
            })
            record_confirmation(ACCEPT, created.domain)

        if result.created_entries:
            self.sessions.increment_records_created(record.id, len(result.created_entries))
        self.db.commit()

        logger.info(
            "Suggestions confirmed",
            extra={
                "session_id": str(record.id),
                "owner_id": principal.id,
                "created": len(result.created_entries),
                "rejected": len(result.rejected_suggestions),
                "skipped": len(result.skipped),
            },
        )
        return result

    def _create_record(
        self,
        session: ImportSessionRecord,
        row: SuggestionRecord,
        modifications: Dict[str, Any],
        now: datetime,
    ):
        if row.suggested_domain:
            suggested_domain, domain_confidence = row.suggested_domain, row.domain_confidence
            record_type, reasoning = row.record_type, row.domain_reasoning
        else:
            live = suggest_domain(row.payee, row.category, row.subcategory)
            suggested_domain, domain_confidence = live.domain, live.confidence
            record_type, reasoning = live.record_type, live.reasoning

        domain = modifications.get("domain") or suggested_domain
        entry = dict(row.suggested_entry)
        for key in ENTRY_OVERRIDES:
            if modifications.get(key) is not None:
                entry[key] = modifications[key]

        amount = from_pence(row.amount_pence)
        fields = {
            "title": entry["title"],
            "provider": entry.get("provider"),
            "entry_type": entry.get("type"),
            "amount": str(modifications.get("amount", amount)),
            "currency": "GBP",
            "frequency": row.frequency,
            "category": row.category,
            "subcategory": row.subcategory,
            "notes": entry.get("notes"),
        }
        import_metadata = {
            "source": BANK_IMPORT_SOURCE,
            "import_session_id": str(session.id),
            "created_from_suggestion": True,
            "original_payee": row.payee,
            "confidence_score": row.confidence,
            "import_date": now.isoformat(),
            "detected_frequency": row.frequency,
            "domain_suggestion": {
                "suggested_domain": suggested_domain,
                "confidence": domain_confidence,
                "reasoning": reasoning,
                "actual_domain": domain,
            },
            "amount_pattern": {"typical_amount": str(amount), "currency": "GBP"},
        }
        return self.records.create(
            owner_id=session.owner_id,
            domain=domain,
            record_type=modifications.get("record_type") or record_type or "other",
            fields=fields,
            import_session_id=session.id,
            import_metadata=import_metadata,
        )

    # Delete and cleanup

    def delete_session(self, session_id: Any, principal: Principal) -> None:
        record = self._owned_session(session_id, principal)
        referencing = self.records.count_referencing(record.id)
        if referencing:
            raise HasAssociatedEntriesError(str(record.id), referencing)

        blob_key = record.blob_key
        self.sessions.delete(record)
        self.db.commit()
        if blob_key:
            self.blob_store.delete(blob_key)
        logger.info("Import session deleted", extra={"session_id": str(session_id), "owner_id": principal.id})

    def cleanup_expired(self, now: Optional[datetime] = None) -> int:
        """Remove expired sessions that no domain record references"""
        now = now or utcnow()
        removed = 0
        for record in self.sessions.find_expired(now):
            if record.status == SessionStatus.PROCESSING.value:
                continue
            if self.records.count_referencing(record.id):
                continue
            blob_key = record.blob_key
            self.sessions.delete(record)
            self.db.commit()
            if blob_key:
                self.blob_store.delete(blob_key)
            removed += 1

        logger.info("Expired import sessions removed", extra={"removed": removed})
        return removed
