"""Import pipeline - runs parse, extract, detect and suggest for one session"""

import logging
import threading
import time
import uuid
from typing import Callable, Set

from sqlalchemy.orm import Session

from lifeadmin_gateway.domain.detector import detect
from lifeadmin_gateway.domain.domain_suggestion import attach_domain_suggestions
from lifeadmin_gateway.domain.exceptions import DomainException, NoTransactionsFound
from lifeadmin_gateway.domain.models import ExtractionResult, ProcessingStage, SessionStatus
from lifeadmin_gateway.domain.statement_parser import parse_statement
from lifeadmin_gateway.domain.transaction_extractor import extract_transactions
from lifeadmin_gateway.infrastructure.database.models import ImportSessionRecord
from lifeadmin_gateway.infrastructure.database.repositories import ImportSessionRepository
from lifeadmin_gateway.infrastructure.observability.logging import log_import_outcome
from lifeadmin_gateway.infrastructure.observability.metrics import (
    record_import,
    record_suggestions,
    stage_duration_histogram,
)
from lifeadmin_gateway.infrastructure.storage.blobs import BlobStore
from lifeadmin_gateway.services.rules import load_snapshot
from lifeadmin_gateway.utils.date_utils import date_range_days
from lifeadmin_gateway.utils.money import to_pence

logger = logging.getLogger(__name__)

# Sessions currently being processed in this process
_active_sessions: Set[str] = set()
_active_lock = threading.Lock()


def claim_session(session_id: str) -> bool:
    with _active_lock:
        if session_id in _active_sessions:
            return False
        _active_sessions.add(session_id)
        return True


def release_session(session_id: str) -> None:
    with _active_lock:
        _active_sessions.discard(session_id)


class ImportPipeline:
    """
    Sequential per-session pipeline.

    Each stage is committed before it starts so status polling observes
    progress. A fatal error fails the session with `error_message` and keeps
    whatever earlier stages already committed.
    """

    def __init__(self, session_factory: Callable[[], Session], blob_store: BlobStore):
        self.session_factory = session_factory
        self.blob_store = blob_store

    def run(self, session_id: uuid.UUID) -> None:
        key = str(session_id)
        if not claim_session(key):
            logger.warning("Session already processing", extra={"session_id": key})
            return

        db = self.session_factory()
        try:
            self._run(db, session_id)
        finally:
            db.close()
            release_session(key)

    def _enter_stage(self, db: Session, record: ImportSessionRecord, stage: ProcessingStage) -> None:
        ImportSessionRepository(db).set_stage(record, stage)
        db.commit()
        logger.info("Import stage started", extra={"session_id": str(record.id), "stage": stage.value})

    def _run(self, db: Session, session_id: uuid.UUID) -> None:
        repo = ImportSessionRepository(db)
        record = repo.get(session_id)
        if record is None or record.status != SessionStatus.PROCESSING.value:
            logger.warning("Session not runnable", extra={"session_id": str(session_id)})
            return

        start_time = time.time()
        owner_id = record.owner_id
        transactions = ()
        suggestions = []

        try:
            # Snapshot taken once; rule edits during the run are not observed
            rule_set = load_snapshot(db, record.rule_set_id)

            self._enter_stage(db, record, ProcessingStage.BANK_IDENTIFICATION)
            with stage_duration_histogram.labels(stage=ProcessingStage.BANK_IDENTIFICATION.value).time():
                data = self.blob_store.get(record.blob_key)
                parsed = parse_statement(data)
            record.bank_name = parsed.bank_name
            db.commit()

            self._enter_stage(db, record, ProcessingStage.TRANSACTION_EXTRACTION)
            with stage_duration_histogram.labels(stage=ProcessingStage.TRANSACTION_EXTRACTION.value).time():
                extraction = extract_transactions(parsed.lines, parsed.bank_name)
            transactions = extraction.transactions
            self._store_extraction(repo, record, extraction)
            db.commit()

            if not transactions:
                raise NoTransactionsFound(f"No transactions recognised in {record.filename}")

            self._enter_stage(db, record, ProcessingStage.PATTERN_DETECTION)
            with stage_duration_histogram.labels(stage=ProcessingStage.PATTERN_DETECTION.value).time():
                suggestions = detect(transactions, rule_set)

            self._enter_stage(db, record, ProcessingStage.SUGGESTION_GENERATION)
            with stage_duration_histogram.labels(stage=ProcessingStage.SUGGESTION_GENERATION.value).time():
                attach_domain_suggestions(suggestions)
                repo.add_suggestions(record, suggestions)
            record.recurring_detected = len(suggestions)
            repo.mark_completed(record)
            db.commit()

            record_import("completed")
            record_suggestions(suggestions)

        except NoTransactionsFound as e:
            logger.warning(str(e), extra={"session_id": str(session_id), "owner_id": owner_id})
            repo.mark_completed(record)
            db.commit()
            record_import("completed")

        except DomainException as e:
            self._fail(db, session_id, str(e))

        except Exception as e:
            logger.exception("Unexpected import failure", extra={"session_id": str(session_id), "owner_id": owner_id})
            self._fail(db, session_id, f"Unexpected error: {e}")

        duration_ms = (time.time() - start_time) * 1000
        final = repo.get(session_id)
        if final is not None:
            log_import_outcome(
                session_id=str(session_id),
                owner_id=owner_id,
                status=final.status,
                stage=final.processing_stage,
                duration_ms=duration_ms,
                total_transactions=len(transactions),
                recurring_detected=len(suggestions) if final.status == SessionStatus.COMPLETED.value else 0,
                error_message=final.error_message,
            )

    def _store_extraction(self, repo: ImportSessionRepository, record: ImportSessionRecord, extraction: ExtractionResult) -> None:
        transactions = extraction.transactions
        repo.add_transactions(record, transactions)

        record.account_number = extraction.account_number
        record.sort_code = extraction.sort_code
        record.period_start = extraction.period_start
        record.period_end = extraction.period_end
        record.total_transactions = len(transactions)
        record.total_debits_pence = sum(to_pence(-t.amount) for t in transactions if t.is_debit)
        record.total_credits_pence = sum(to_pence(t.amount) for t in transactions if not t.is_debit)

        if transactions:
            dates = [t.date for t in transactions]
            record.date_range_days = date_range_days(min(dates), max(dates))

    def _fail(self, db: Session, session_id: uuid.UUID, message: str) -> None:
        """Mark failed without rolling back stages that already committed"""
        db.rollback()
        repo = ImportSessionRepository(db)
        record = repo.get(session_id)
        if record is None:
            return
        repo.mark_failed(record, message)
        db.commit()
        record_import("failed")
        logger.error(
            "Import failed",
            extra={"session_id": str(session_id), "stage": record.processing_stage, "error_message": message},
        )


def run_import(session_factory: Callable[[], Session], blob_store: BlobStore, session_id: uuid.UUID) -> None:
    """Background task entry point"""
    ImportPipeline(session_factory, blob_store).run(session_id)
