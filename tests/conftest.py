"""Pytest fixtures for testing"""

import pytest
from datetime import date, timedelta
from decimal import Decimal
from pathlib import Path
from typing import Callable, Generator, List, Sequence
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from lifeadmin_gateway.api.dependencies import get_blob_store
from lifeadmin_gateway.api.main import create_app
from lifeadmin_gateway.domain.models import Principal, Transaction
from lifeadmin_gateway.infrastructure.database.models import Base
from lifeadmin_gateway.infrastructure.database.session import get_db, get_session_factory
from lifeadmin_gateway.infrastructure.storage.blobs import LocalBlobStore


# Test database
TEST_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

OWNER_ID = "user_alice"
OTHER_ID = "user_bob"


def build_statement_pdf(lines: Sequence[str]) -> bytes:
    """Single-page PDF whose text layer holds one statement line per row"""

    def escape(text: str) -> str:
        return text.replace("\\", "\\\\").replace("(", "\\(").replace(")", "\\)")

    rows = []
    y = 800
    for line in lines:
        rows.append(f"BT /F1 9 Tf 1 0 0 1 40 {y} Tm ({escape(line)}) Tj ET")
        y -= 14
    content = "\n".join(rows).encode("latin-1")

    objects = [
        b"<< /Type /Catalog /Pages 2 0 R >>",
        b"<< /Type /Pages /Kids [3 0 R] /Count 1 >>",
        b"<< /Type /Page /Parent 2 0 R /MediaBox [0 0 595 842] "
        b"/Resources << /Font << /F1 5 0 R >> >> /Contents 4 0 R >>",
        b"<< /Length " + str(len(content)).encode() + b" >>\nstream\n" + content + b"\nendstream",
        b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica /Encoding /WinAnsiEncoding >>",
    ]

    out = bytearray(b"%PDF-1.4\n")
    offsets = []
    for number, body in enumerate(objects, start=1):
        offsets.append(len(out))
        out += f"{number} 0 obj\n".encode() + body + b"\nendobj\n"

    xref_at = len(out)
    out += f"xref\n0 {len(objects) + 1}\n".encode()
    out += b"0000000000 65535 f \n"
    for offset in offsets:
        out += f"{offset:010d} 00000 n \n".encode()
    out += f"trailer\n<< /Size {len(objects) + 1} /Root 1 0 R >>\nstartxref\n{xref_at}\n%%EOF\n".encode()
    return bytes(out)


def monthly(day: int, months: int, start_month: int = 1, year: int = 2024) -> List[date]:
    return [date(year, start_month + i, day) for i in range(months)]


def statement_lines() -> List[str]:
    """NatWest-style statement, January to June 2024"""
    lines = [
        "NATIONAL WESTMINSTER BANK PLC",
        "Account Number: 12345678 Sort Code: 60-16-13",
        "Statement Period: 01/01/2024 to 30/06/2024",
        "Date Description Amount Balance",
    ]
    balance = Decimal("2000.00")
    entries = []
    for d in monthly(15, 6):
        entries.append((d, "DD BRITISH GAS 600123456", Decimal("85.00")))
    for d in monthly(3, 6):
        entries.append((d, "NETFLIX.COM", Decimal("10.99")))
    entries.append((date(2024, 2, 8), "TESCO STORES 2841", Decimal("23.45")))
    entries.append((date(2024, 1, 28), "SALARY ACME LTD", Decimal("2500.00")))

    for d, description, amount in sorted(entries, key=lambda e: e[0]):
        balance = balance + amount if description.startswith("SALARY") else balance - amount
        lines.append(f"{d.strftime('%d/%m/%Y')} {description} {amount:,.2f} {balance:,.2f}")
    lines.append("Closing balance carried forward")
    return lines


@pytest.fixture
def db() -> Generator[Session, None, None]:
    """Create test database and session"""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def session_factory() -> sessionmaker:
    """Factory handed to the import pipeline, as in the background task"""
    return TestingSessionLocal


@pytest.fixture
def blob_store(tmp_path: Path) -> LocalBlobStore:
    return LocalBlobStore(tmp_path / "blobs")


@pytest.fixture
def client(db: Session, blob_store: LocalBlobStore, session_factory: sessionmaker) -> TestClient:
    """Create FastAPI test client with test database and blob directory"""
    app = create_app()

    # A fresh session per request, so reads observe what the pipeline committed
    def override_get_db():
        session = TestingSessionLocal()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_blob_store] = lambda: blob_store
    return TestClient(app)


@pytest.fixture
def owner() -> Principal:
    return Principal(id=OWNER_ID)


@pytest.fixture
def other_user() -> Principal:
    return Principal(id=OTHER_ID)


@pytest.fixture
def admin() -> Principal:
    return Principal(id="ops_admin", role="admin")


@pytest.fixture
def owner_headers() -> dict:
    return {"X-User-Id": OWNER_ID}


@pytest.fixture
def other_headers() -> dict:
    return {"X-User-Id": OTHER_ID}


@pytest.fixture
def admin_headers() -> dict:
    return {"X-User-Id": "ops_admin", "X-User-Role": "admin"}


@pytest.fixture
def statement_pdf() -> Callable[[Sequence[str]], bytes]:
    """Builder for in-test statement PDFs"""
    return build_statement_pdf


@pytest.fixture
def sample_statement() -> bytes:
    return build_statement_pdf(statement_lines())


@pytest.fixture
def sample_transactions() -> list[Transaction]:
    """Six months of British Gas and Netflix debits plus one-off noise"""
    transactions = []
    for d in monthly(15, 6):
        transactions.append(
            Transaction(
                date=d,
                description="DD BRITISH GAS 600123456",
                amount=Decimal("-85.00"),
                original_text=f"{d} DD BRITISH GAS 600123456 85.00",
            )
        )
    for d in monthly(3, 6):
        transactions.append(
            Transaction(date=d, description="NETFLIX.COM", amount=Decimal("-10.99"), original_text=f"{d} NETFLIX.COM")
        )
    transactions.append(
        Transaction(
            date=date(2024, 2, 8),
            description="TESCO STORES 2841",
            amount=Decimal("-23.45"),
            original_text="08/02/2024 TESCO STORES 2841 23.45",
        )
    )
    transactions.append(
        Transaction(
            date=date(2024, 1, 28),
            description="SALARY ACME LTD",
            amount=Decimal("2500.00"),
            original_text="28/01/2024 SALARY ACME LTD 2,500.00",
        )
    )
    return sorted(transactions, key=lambda t: t.date)


@pytest.fixture
def today() -> date:
    return date(2024, 7, 1)


@pytest.fixture
def days_from(today: date) -> Callable[[int], date]:
    return lambda days: today + timedelta(days=days)
