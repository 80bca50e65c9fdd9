"""SQLAlchemy ORM models for import sessions, rule sets and domain records"""

import uuid
from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()


class ImportSessionRecord(Base):
    """One uploaded statement and the state of its processing pipeline"""

    __tablename__ = "import_session"
    __table_args__ = (
        # Re-uploading identical bytes never creates a second session
        UniqueConstraint("owner_id", "content_hash", name="uq_import_session_owner_hash"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    owner_id = Column(Text, nullable=False, index=True)
    filename = Column(Text, nullable=False)
    file_size = Column(Integer, nullable=False)
    content_hash = Column(Text, nullable=False)
    blob_key = Column(Text, nullable=True)
    rule_set_id = Column(UUID(as_uuid=True), ForeignKey("detection_rule_set.id", ondelete="SET NULL"), nullable=True)

    status = Column(Text, nullable=False, default="processing", index=True)
    processing_stage = Column(Text, nullable=False, default="bank_identification")
    error_message = Column(Text, nullable=True)

    bank_name = Column(Text, nullable=True)
    account_number = Column(Text, nullable=True)  # masked, last four digits only
    sort_code = Column(Text, nullable=True)
    period_start = Column(Date, nullable=True)
    period_end = Column(Date, nullable=True)

    total_transactions = Column(Integer, nullable=False, default=0)
    recurring_detected = Column(Integer, nullable=False, default=0)
    date_range_days = Column(Integer, nullable=False, default=0)
    total_debits_pence = Column(BigInteger, nullable=False, default=0)
    total_credits_pence = Column(BigInteger, nullable=False, default=0)
    records_created = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())
    expires_at = Column(DateTime, nullable=True, index=True)

    transactions = relationship(
        "StatementTransaction",
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="StatementTransaction.position",
    )
    suggestions = relationship(
        "SuggestionRecord",
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="SuggestionRecord.position",
    )


class StatementTransaction(Base):
    """Transaction extracted from a statement, in statement order"""

    __tablename__ = "statement_transaction"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    session_id = Column(UUID(as_uuid=True), ForeignKey("import_session.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False)
    txn_date = Column(Date, nullable=False)
    description = Column(Text, nullable=False)
    amount_pence = Column(BigInteger, nullable=False)  # negative for debits
    balance_pence = Column(BigInteger, nullable=True)
    original_text = Column(Text, nullable=False)
    record_created = Column(Boolean, nullable=False, default=False)
    created_record_id = Column(UUID(as_uuid=True), nullable=True)
    created_record_domain = Column(Text, nullable=True)

    session = relationship("ImportSessionRecord", back_populates="transactions")


class SuggestionRecord(Base):
    """Recurring payment suggestion awaiting user confirmation"""

    __tablename__ = "recurring_suggestion"
    __table_args__ = (
        UniqueConstraint("session_id", "position", name="uq_suggestion_session_position"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    session_id = Column(UUID(as_uuid=True), ForeignKey("import_session.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False)  # suggestion_index exposed to clients
    payee = Column(Text, nullable=False)
    category = Column(Text, nullable=False)
    subcategory = Column(Text, nullable=True)
    amount_pence = Column(BigInteger, nullable=False)
    frequency = Column(Text, nullable=False)
    confidence = Column(Float, nullable=False)
    low_confidence = Column(Boolean, nullable=False, default=False)
    occurrences = Column(Integer, nullable=False)
    transaction_indexes = Column(JSON, nullable=False, default=list)
    suggested_entry = Column(JSON, nullable=False)
    suggested_domain = Column(Text, nullable=True)
    domain_confidence = Column(Float, nullable=True)
    record_type = Column(Text, nullable=True)
    domain_reasoning = Column(Text, nullable=True)
    status = Column(Text, nullable=False, default="pending")
    user_modifications = Column(JSON, nullable=True)
    created_record_id = Column(UUID(as_uuid=True), nullable=True)

    session = relationship("ImportSessionRecord", back_populates="suggestions")


class DetectionRuleSetRecord(Base):
    """Stored detection rule set; category rules and settings kept as JSON"""

    __tablename__ = "detection_rule_set"
    __table_args__ = (
        # At most one default rule set process-wide
        Index(
            "uq_detection_rule_set_default",
            "is_default",
            unique=True,
            postgresql_where=text("is_default"),
            sqlite_where=text("is_default = 1"),
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    version = Column(Text, nullable=False, default="1.0")
    is_default = Column(Boolean, nullable=False, default=False)
    owner_id = Column(Text, nullable=True, index=True)
    category_rules = Column(JSON, nullable=False, default=list)
    settings = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())


class DomainRecord(Base):
    """Life-domain record created from a confirmed suggestion or by the user"""

    __tablename__ = "domain_record"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    owner_id = Column(Text, nullable=False, index=True)
    domain = Column(Text, nullable=False, index=True)
    record_type = Column(Text, nullable=False, default="other")
    title = Column(Text, nullable=False)
    provider = Column(Text, nullable=True)
    fields = Column(JSON, nullable=False, default=dict)
    import_session_id = Column(UUID(as_uuid=True), nullable=True, index=True)
    import_metadata = Column(JSON, nullable=True)

    renewal_end_date = Column(Date, nullable=True)
    renewal_is_active = Column(Boolean, nullable=False, default=False, index=True)
    urgency_level = Column(Text, nullable=False, default="important")
    reminder_days = Column(JSON, nullable=True)
    regulatory_type = Column(Text, nullable=True)
    notice_period_days = Column(Integer, nullable=True)
    is_auto_renewal = Column(Boolean, nullable=False, default=False)
    requires_action = Column(Boolean, nullable=False, default=False)
    next_reminder_due = Column(DateTime, nullable=True)
    last_processed_date = Column(DateTime, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())
