"""Unit tests for PDF decoding and bank identification"""

import pytest
from unittest.mock import patch
from pypdf.errors import PdfReadError

from lifeadmin_gateway.domain.exceptions import InvalidFormatError, ParseError
from lifeadmin_gateway.domain.statement_parser import (
    identify_bank,
    parse_statement,
    read_pdf_text,
    split_lines,
)


def test_rejects_bytes_without_pdf_signature():
    """Test non-PDF upload is an invalid format, not a parse error"""
    with pytest.raises(InvalidFormatError):
        read_pdf_text(b"Date,Description,Amount\n01/01/2024,TESCO,12.00\n")


def test_rejects_empty_bytes():
    with pytest.raises(InvalidFormatError):
        read_pdf_text(b"")


@patch("lifeadmin_gateway.domain.statement_parser.pypdf.PdfReader", side_effect=PdfReadError("EOF marker not found"))
def test_corrupt_pdf_raises_parse_error(mock_reader):
    """Test decoder failures surface as ParseError"""
    with pytest.raises(ParseError) as exc_info:
        read_pdf_text(b"%PDF-1.4\nbroken")

    assert "Unable to decode PDF" in str(exc_info.value)


@patch("lifeadmin_gateway.domain.statement_parser.pypdf.PdfReader")
def test_password_protected_pdf_raises_parse_error(mock_reader):
    """Test encrypted documents that will not open with an empty password"""
    mock_reader.return_value.is_encrypted = True
    mock_reader.return_value.decrypt.return_value = 0

    with pytest.raises(ParseError) as exc_info:
        read_pdf_text(b"%PDF-1.7\nencrypted")

    assert "password" in str(exc_info.value)


def test_parse_statement_extracts_lines_and_bank(statement_pdf):
    """Test a generated statement decodes to trimmed lines with the bank identified"""
    data = statement_pdf([
        "NATIONAL WESTMINSTER BANK PLC",
        "15/01/2024 DD BRITISH GAS 600123456 85.00 1,915.00",
    ])

    parsed = parse_statement(data)

    assert parsed.bank_name == "NatWest"
    assert parsed.page_count == 1
    assert any("BRITISH GAS" in line for line in parsed.lines)
    assert all(line == line.strip() and line for line in parsed.lines)


def test_identify_bank_prefers_header_over_body():
    """Test a payee named after another bank does not override the header"""
    lines = ["HSBC UK BANK PLC", "Your statement"] + ["filler"] * 20 + [
        "03/02/2024 BARCLAYS CARD PAYMENT 40.00",
    ] + ["filler"] * 20

    assert identify_bank(lines) == "HSBC"


def test_identify_bank_falls_back_to_body():
    lines = ["Statement"] + ["filler"] * 30 + ["Santander UK plc is authorised"] + ["filler"] * 30

    assert identify_bank(lines) == "Santander"


def test_identify_bank_unknown():
    assert identify_bank(["Monzo statement", "01/01/2024 COFFEE 3.20"]) == "Unknown"


def test_split_lines_drops_blank_lines():
    assert split_lines("  one \n\n   \ntwo\n") == ["one", "two"]
