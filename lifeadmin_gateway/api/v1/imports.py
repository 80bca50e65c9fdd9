"""/v1/imports - statement upload, session status and suggestion confirmation"""

from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, Query, UploadFile
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session, sessionmaker
from starlette.responses import Response

from lifeadmin_gateway.api.dependencies import get_blob_store, get_principal
from lifeadmin_gateway.api.v1.schemas import (
    CleanupResponse,
    ConfirmRequest,
    ConfirmResponse,
    DuplicateUploadResponse,
    MarkProcessedRequest,
    Pagination,
    SessionListResponse,
    SessionResponse,
    SessionStatistics,
    SessionSummary,
    StatementPeriod,
    StatusResponse,
    SuggestionSchema,
    TransactionListResponse,
    TransactionSchema,
    UploadResponse,
)
from lifeadmin_gateway.domain.exceptions import ForbiddenError
from lifeadmin_gateway.domain.models import Principal
from lifeadmin_gateway.infrastructure.database.models import ImportSessionRecord, StatementTransaction
from lifeadmin_gateway.infrastructure.database.session import get_db, get_session_factory
from lifeadmin_gateway.infrastructure.storage.blobs import BlobStore
from lifeadmin_gateway.services.imports import Confirmation, ImportService
from lifeadmin_gateway.services.pipeline import run_import
from lifeadmin_gateway.utils.money import from_pence

router = APIRouter()


def _summary_fields(record: ImportSessionRecord) -> dict:
    return {
        "session_id": str(record.id),
        "filename": record.filename,
        "status": record.status,
        "processing_stage": record.processing_stage,
        "bank_name": record.bank_name,
        "total_transactions": record.total_transactions,
        "recurring_detected": record.recurring_detected,
        "created_at": record.created_at,
    }


def _session_response(record: ImportSessionRecord) -> SessionResponse:
    return SessionResponse(
        **_summary_fields(record),
        file_size=record.file_size,
        rule_set_id=str(record.rule_set_id) if record.rule_set_id else None,
        account_number=record.account_number,
        sort_code=record.sort_code,
        statement_period=StatementPeriod(start=record.period_start, end=record.period_end),
        statistics=SessionStatistics(
            total_transactions=record.total_transactions,
            recurring_detected=record.recurring_detected,
            date_range_days=record.date_range_days,
            total_debits=from_pence(record.total_debits_pence),
            total_credits=from_pence(record.total_credits_pence),
            records_created=record.records_created,
        ),
        error_message=record.error_message,
        expires_at=record.expires_at,
        recurring_payments=[SuggestionSchema.from_record(row) for row in record.suggestions],
    )


def _transaction_schema(row: StatementTransaction) -> TransactionSchema:
    return TransactionSchema(
        index=row.position,
        date=row.txn_date,
        description=row.description,
        amount=from_pence(row.amount_pence),
        balance=from_pence(row.balance_pence),
        record_created=row.record_created,
        created_record_id=str(row.created_record_id) if row.created_record_id else None,
        created_record_domain=row.created_record_domain,
    )


@router.post("/imports", response_model=UploadResponse, status_code=202, responses={409: {"model": DuplicateUploadResponse}})
def upload_statement(
    background_tasks: BackgroundTasks,
    file: UploadFile = File(...),
    rule_set_id: Optional[str] = Form(None),
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
    blob_store: BlobStore = Depends(get_blob_store),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    """
    Upload a PDF statement.

    Returns immediately with status=processing; the pipeline runs as a
    background task and callers poll the status endpoint. Re-uploading the
    same bytes answers 409 with the existing session id.
    """
    data = file.file.read()
    service = ImportService(db, blob_store)
    outcome = service.upload_statement(principal, data, file.filename or "statement.pdf", rule_set_id)

    if outcome.duplicate:
        body = DuplicateUploadResponse(existing_session_id=str(outcome.session_id), status=outcome.status)
        return JSONResponse(status_code=409, content=body.model_dump())

    if outcome.needs_processing:
        background_tasks.add_task(run_import, session_factory, blob_store, outcome.session_id)

    return UploadResponse(session_id=str(outcome.session_id), status=outcome.status, filename=outcome.filename)


@router.get("/imports", response_model=SessionListResponse)
def list_sessions(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status: Optional[str] = Query(None),
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
    blob_store: BlobStore = Depends(get_blob_store),
):
    rows, pagination = ImportService(db, blob_store).list_sessions(principal, page=page, limit=limit, status=status)
    return SessionListResponse(
        sessions=[SessionSummary(**_summary_fields(r)) for r in rows],
        pagination=Pagination(**pagination),
    )


@router.post("/imports/cleanup", response_model=CleanupResponse)
def cleanup_expired_sessions(
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
    blob_store: BlobStore = Depends(get_blob_store),
):
    """Remove expired sessions no domain record references (admin only)"""
    if not principal.is_admin:
        raise ForbiddenError("Cleanup requires the admin role")
    return CleanupResponse(removed=ImportService(db, blob_store).cleanup_expired())


@router.get("/imports/{session_id}", response_model=SessionResponse)
def get_session(
    session_id: str,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
    blob_store: BlobStore = Depends(get_blob_store),
):
    return _session_response(ImportService(db, blob_store).get_session(session_id, principal))


@router.get("/imports/{session_id}/status", response_model=StatusResponse)
def get_status(
    session_id: str,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
    blob_store: BlobStore = Depends(get_blob_store),
):
    return StatusResponse(**ImportService(db, blob_store).get_status(session_id, principal))


@router.get("/imports/{session_id}/transactions", response_model=TransactionListResponse)
def list_transactions(
    session_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=500),
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
    blob_store: BlobStore = Depends(get_blob_store),
):
    rows, pagination = ImportService(db, blob_store).list_transactions(session_id, principal, page=page, limit=limit)
    return TransactionListResponse(
        session_id=session_id,
        transactions=[_transaction_schema(r) for r in rows],
        pagination=Pagination(**pagination),
    )


@router.post("/imports/{session_id}/transactions/{transaction_index}/processed", response_model=TransactionSchema)
def mark_transaction_processed(
    session_id: str,
    transaction_index: int,
    request_body: MarkProcessedRequest,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
    blob_store: BlobStore = Depends(get_blob_store),
):
    row = ImportService(db, blob_store).mark_transaction_processed(
        session_id,
        principal,
        transaction_index,
        record_id=request_body.record_id,
        domain=request_body.domain,
    )
    return _transaction_schema(row)


@router.post("/imports/{session_id}/confirm", response_model=ConfirmResponse)
def confirm_suggestions(
    session_id: str,
    request_body: ConfirmRequest,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
    blob_store: BlobStore = Depends(get_blob_store),
):
    """
    Accept or reject suggestions, one by one or in bulk.

    An out-of-range index rejects the whole call before any record is created.
    """
    confirmations = None
    if request_body.confirmations is not None:
        confirmations = [
            Confirmation(item.suggestion_index, item.action, item.modifications)
            for item in request_body.confirmations
        ]

    result = ImportService(db, blob_store).confirm_suggestions(
        session_id,
        principal,
        confirmations=confirmations,
        bulk_action=request_body.bulk_action,
    )
    return ConfirmResponse(
        created_entries=result.created_entries,
        rejected_suggestions=result.rejected_suggestions,
        skipped=result.skipped,
    )


@router.post("/imports/{session_id}/retry", response_model=UploadResponse, status_code=202)
def retry_session(
    session_id: str,
    background_tasks: BackgroundTasks,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
    blob_store: BlobStore = Depends(get_blob_store),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    record = ImportService(db, blob_store).retry_session(session_id, principal)
    background_tasks.add_task(run_import, session_factory, blob_store, record.id)
    return UploadResponse(session_id=str(record.id), status=record.status, filename=record.filename)


@router.delete("/imports/{session_id}", status_code=204)
def delete_session(
    session_id: str,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
    blob_store: BlobStore = Depends(get_blob_store),
):
    """Fails with 409 while any domain record references the session"""
    ImportService(db, blob_store).delete_session(session_id, principal)
    return Response(status_code=204)
