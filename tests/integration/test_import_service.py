"""Integration tests for import sessions, the pipeline and confirmation"""

import uuid

import pytest
from datetime import timedelta
from decimal import Decimal
from unittest.mock import patch
from sqlalchemy.orm import sessionmaker

from lifeadmin_gateway.config import settings
from lifeadmin_gateway.domain.exceptions import (
    ForbiddenError,
    HasAssociatedEntriesError,
    InvalidIndexError,
    NotFoundError,
    SessionNotReadyError,
    ValidationError,
)
from lifeadmin_gateway.infrastructure.database.repositories import DomainRecordRepository
from lifeadmin_gateway.services.imports import Confirmation, ImportService
from lifeadmin_gateway.services.pipeline import ImportPipeline, claim_session, release_session
from lifeadmin_gateway.utils.date_utils import utcnow


pytestmark = pytest.mark.integration


def run_pipeline(db, blob_store, session_id):
    ImportPipeline(sessionmaker(bind=db.get_bind()), blob_store).run(session_id)
    db.expire_all()


def import_statement(db, blob_store, principal, data):
    service = ImportService(db, blob_store)
    outcome = service.upload_statement(principal, data, "statement.pdf")
    run_pipeline(db, blob_store, outcome.session_id)
    return service, outcome.session_id


def index_of(record, payee):
    return next(s.position for s in record.suggestions if s.payee == payee)


def test_upload_registers_processing_session(db, blob_store, owner, sample_statement):
    outcome = ImportService(db, blob_store).upload_statement(owner, sample_statement, "june.pdf")

    record = ImportService(db, blob_store).get_session(outcome.session_id, owner)
    assert outcome.status == "processing"
    assert outcome.needs_processing is True
    assert outcome.duplicate is False
    assert record.processing_stage == "bank_identification"
    assert record.file_size == len(sample_statement)
    assert record.expires_at > utcnow() + timedelta(days=settings.session_ttl_days - 1)
    assert blob_store.get(record.blob_key) == sample_statement


def test_duplicate_upload_returns_existing_session(db, blob_store, owner, sample_statement):
    service = ImportService(db, blob_store)
    first = service.upload_statement(owner, sample_statement, "june.pdf")

    second = service.upload_statement(owner, sample_statement, "june-again.pdf")

    assert second.duplicate is True
    assert second.needs_processing is False
    assert second.session_id == first.session_id
    assert second.filename == "june.pdf"


def test_same_bytes_for_another_owner_is_a_new_session(db, blob_store, owner, other_user, sample_statement):
    service = ImportService(db, blob_store)
    first = service.upload_statement(owner, sample_statement, "june.pdf")

    second = service.upload_statement(other_user, sample_statement, "june.pdf")

    assert second.duplicate is False
    assert second.session_id != first.session_id


def test_upload_rejects_empty_and_oversize_files(db, blob_store, owner):
    service = ImportService(db, blob_store)

    with pytest.raises(ValidationError):
        service.upload_statement(owner, b"", "empty.pdf")

    with patch.object(settings, "max_upload_bytes", 10):
        with pytest.raises(ValidationError):
            service.upload_statement(owner, b"%PDF-1.4 more than ten bytes", "big.pdf")


def test_pipeline_completes_with_statistics_and_suggestions(db, blob_store, owner, sample_statement):
    service, session_id = import_statement(db, blob_store, owner, sample_statement)

    record = service.get_session(session_id, owner)
    assert record.status == "completed"
    assert record.processing_stage == "suggestion_generation"
    assert record.bank_name == "NatWest"
    assert record.account_number == "****5678"
    assert record.sort_code == "60-16-13"
    assert record.total_transactions == 14
    assert record.recurring_detected == 2
    assert record.total_debits_pence == 59939
    assert record.total_credits_pence == 250000
    assert record.date_range_days == 164

    gas = record.suggestions[index_of(record, "British Gas")]
    assert gas.amount_pence == -8500
    assert gas.frequency == "monthly"
    assert gas.suggested_domain == "property"
    assert gas.record_type == "utility-gas"
    assert gas.status == "pending"
    assert gas.occurrences == 6


def test_pipeline_fails_on_non_pdf_blob(db, blob_store, owner):
    service, session_id = import_statement(db, blob_store, owner, b"Date,Description,Amount\n")

    status = service.get_status(session_id, owner)
    assert status["status"] == "failed"
    assert status["processing_stage"] == "bank_identification"
    assert "not a PDF" in status["error_message"]


def test_pipeline_completes_empty_when_no_transactions(db, blob_store, owner, statement_pdf):
    data = statement_pdf(["NATIONAL WESTMINSTER BANK PLC", "Thank you for banking with us"])

    service, session_id = import_statement(db, blob_store, owner, data)

    record = service.get_session(session_id, owner)
    assert record.status == "completed"
    assert record.total_transactions == 0
    assert record.suggestions == []


@patch("lifeadmin_gateway.services.pipeline.detect", side_effect=RuntimeError("detector exploded"))
def test_unexpected_error_fails_session_and_keeps_earlier_stages(mock_detect, db, blob_store, owner, sample_statement):
    service, session_id = import_statement(db, blob_store, owner, sample_statement)

    record = service.get_session(session_id, owner)
    assert record.status == "failed"
    assert record.processing_stage == "pattern_detection"
    assert record.error_message == "Unexpected error: detector exploded"
    # Extraction committed before detection started
    assert record.total_transactions == 14


def test_session_already_claimed_is_not_run_twice(db, blob_store, owner, sample_statement):
    outcome = ImportService(db, blob_store).upload_statement(owner, sample_statement, "june.pdf")
    claim_session(str(outcome.session_id))
    try:
        run_pipeline(db, blob_store, outcome.session_id)
    finally:
        release_session(str(outcome.session_id))

    assert ImportService(db, blob_store).get_status(outcome.session_id, owner)["status"] == "processing"


def test_reupload_of_failed_session_requeues_it(db, blob_store, owner, sample_statement):
    with patch("lifeadmin_gateway.services.pipeline.detect", side_effect=RuntimeError("boom")):
        service, session_id = import_statement(db, blob_store, owner, sample_statement)

    outcome = service.upload_statement(owner, sample_statement, "statement.pdf")
    assert outcome.duplicate is False
    assert outcome.needs_processing is True
    assert outcome.session_id == session_id

    run_pipeline(db, blob_store, session_id)
    record = service.get_session(session_id, owner)
    assert record.status == "completed"
    assert record.error_message is None
    assert record.total_transactions == 14


def test_retry_only_for_failed_sessions(db, blob_store, owner, sample_statement):
    service, session_id = import_statement(db, blob_store, owner, sample_statement)

    with pytest.raises(ValidationError):
        service.retry_session(session_id, owner)


def test_ownership_checks(db, blob_store, owner, other_user, admin, sample_statement):
    service, session_id = import_statement(db, blob_store, owner, sample_statement)

    with pytest.raises(ForbiddenError):
        service.get_session(session_id, other_user)
    with pytest.raises(NotFoundError):
        service.get_session("not-a-uuid", owner)
    assert service.get_session(session_id, admin).id == session_id


def test_confirm_accept_creates_domain_record(db, blob_store, owner, sample_statement):
    service, session_id = import_statement(db, blob_store, owner, sample_statement)
    gas_index = index_of(service.get_session(session_id, owner), "British Gas")

    result = service.confirm_suggestions(session_id, owner, [Confirmation(gas_index, "accept")])

    assert len(result.created_entries) == 1
    created = result.created_entries[0]
    assert created["domain"] == "property"
    assert created["title"] == "British Gas - Gas"

    db.expire_all()
    record = DomainRecordRepository(db).find_by_id(uuid.UUID(created["record_id"]))
    assert record.owner_id == owner.id
    assert record.import_metadata["source"] == "bank_import"
    assert record.import_metadata["import_session_id"] == str(session_id)
    assert record.import_metadata["original_payee"] == "British Gas"
    assert record.fields["amount"] == str(Decimal("-85.00"))

    session = service.get_session(session_id, owner)
    assert session.records_created == 1
    assert session.suggestions[gas_index].status == "accepted"
    linked = [t for t in session.transactions if t.record_created]
    assert len(linked) == 6
    assert all(t.created_record_domain == "property" for t in linked)


def test_confirm_twice_creates_one_record(db, blob_store, owner, sample_statement):
    """Test a repeated accept is reported as skipped"""
    service, session_id = import_statement(db, blob_store, owner, sample_statement)

    service.confirm_suggestions(session_id, owner, [Confirmation(0, "accept")])
    db.expire_all()
    again = service.confirm_suggestions(session_id, owner, [Confirmation(0, "accept")])

    assert again.created_entries == []
    assert again.skipped == [{"suggestion_index": 0, "reason": "already_decided"}]
    assert DomainRecordRepository(db).count_referencing(session_id) == 1


def test_confirm_invalid_index_writes_nothing(db, blob_store, owner, sample_statement):
    service, session_id = import_statement(db, blob_store, owner, sample_statement)

    with pytest.raises(InvalidIndexError) as exc_info:
        service.confirm_suggestions(
            session_id,
            owner,
            [Confirmation(0, "accept"), Confirmation(99, "accept")],
        )

    assert exc_info.value.index == 99
    db.expire_all()
    assert DomainRecordRepository(db).count_referencing(session_id) == 0
    assert all(s.status == "pending" for s in service.get_session(session_id, owner).suggestions)


def test_confirm_modifications_override_domain_and_title(db, blob_store, owner, sample_statement):
    service, session_id = import_statement(db, blob_store, owner, sample_statement)

    result = service.confirm_suggestions(
        session_id,
        owner,
        [Confirmation(0, "accept", {"domain": "services", "title": "Family account"})],
    )

    assert result.created_entries[0]["domain"] == "services"
    assert result.created_entries[0]["title"] == "Family account"


def test_confirm_rejects_unknown_domain(db, blob_store, owner, sample_statement):
    service, session_id = import_statement(db, blob_store, owner, sample_statement)

    with pytest.raises(ValidationError):
        service.confirm_suggestions(session_id, owner, [Confirmation(0, "accept", {"domain": "pets"})])


def test_reject_all(db, blob_store, owner, sample_statement):
    service, session_id = import_statement(db, blob_store, owner, sample_statement)

    result = service.confirm_suggestions(session_id, owner, bulk_action="reject_all")

    assert len(result.rejected_suggestions) == 2
    assert result.created_entries == []


def test_confirm_requires_completed_session(db, blob_store, owner, sample_statement):
    service = ImportService(db, blob_store)
    outcome = service.upload_statement(owner, sample_statement, "june.pdf")

    with pytest.raises(SessionNotReadyError):
        service.confirm_suggestions(outcome.session_id, owner, bulk_action="accept_all")


def test_delete_blocked_while_records_reference_session(db, blob_store, owner, sample_statement):
    service, session_id = import_statement(db, blob_store, owner, sample_statement)
    service.confirm_suggestions(session_id, owner, [Confirmation(0, "accept")])

    with pytest.raises(HasAssociatedEntriesError) as exc_info:
        service.delete_session(session_id, owner)

    assert exc_info.value.count == 1


def test_delete_removes_session_and_blob(db, blob_store, owner, sample_statement):
    service, session_id = import_statement(db, blob_store, owner, sample_statement)
    blob_key = service.get_session(session_id, owner).blob_key

    service.delete_session(session_id, owner)

    with pytest.raises(NotFoundError):
        service.get_session(session_id, owner)
    with pytest.raises(NotFoundError):
        blob_store.get(blob_key)


def test_cleanup_removes_only_unreferenced_expired_sessions(db, blob_store, owner, sample_statement, statement_pdf):
    service, kept_id = import_statement(db, blob_store, owner, sample_statement)
    service.confirm_suggestions(kept_id, owner, [Confirmation(0, "accept")])
    _, removed_id = import_statement(db, blob_store, owner, statement_pdf(["NATIONAL WESTMINSTER BANK PLC"]))

    later = utcnow() + timedelta(days=settings.session_ttl_days + 1)
    removed = service.cleanup_expired(now=later)

    assert removed == 1
    assert service.get_session(kept_id, owner).id == kept_id
    with pytest.raises(NotFoundError):
        service.get_session(removed_id, owner)


def test_mark_transaction_processed_links_existing_record(db, blob_store, owner, sample_statement):
    service, session_id = import_statement(db, blob_store, owner, sample_statement)
    record = DomainRecordRepository(db).create(owner_id=owner.id, domain="finance", fields={"title": "Salary"})
    db.commit()

    transaction = service.mark_transaction_processed(session_id, owner, 2, record.id, "employment")

    assert transaction.record_created is True
    assert transaction.created_record_id == record.id
    assert transaction.created_record_domain == "employment"
