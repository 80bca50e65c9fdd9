"""Statement parser - decodes PDF bytes into text lines and identifies the bank"""

import io
import logging
from typing import List, Sequence, Tuple

import pypdf
from pypdf.errors import PyPdfError

from lifeadmin_gateway.domain.exceptions import InvalidFormatError, ParseError
from lifeadmin_gateway.domain.models import ParsedStatement, UNKNOWN_BANK

logger = logging.getLogger(__name__)

PDF_SIGNATURE = b"%PDF-"

# Checked in order; first marker found wins
BANK_MARKERS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("NatWest", ("NATWEST", "NAT WEST", "NATIONAL WESTMINSTER")),
    ("Barclays", ("BARCLAYS",)),
    ("HSBC", ("HSBC",)),
    ("Lloyds", ("LLOYDS BANK", "LLOYDS")),
    ("Santander", ("SANTANDER",)),
    ("TSB", ("TSB BANK", "THE SAVINGS BANK")),
    ("Halifax", ("HALIFAX",)),
    ("Nationwide", ("NATIONWIDE",)),
    ("Co-operative", ("CO-OPERATIVE BANK", "CO-OPERATIVE", "COOP BANK")),
    ("First Direct", ("FIRST DIRECT",)),
)

HEADER_LINES = 15
FOOTER_LINES = 10


def read_pdf_text(data: bytes) -> Tuple[str, int]:
    """
    Extract the text layer of a PDF.

    Returns:
        (text, page_count)

    Raises:
        InvalidFormatError: bytes do not start with the PDF signature
        ParseError: document is corrupt or encrypted
    """
    if not data or not data.startswith(PDF_SIGNATURE):
        raise InvalidFormatError("Uploaded file is not a PDF document")

    try:
        reader = pypdf.PdfReader(io.BytesIO(data))
        if reader.is_encrypted and not reader.decrypt(""):
            raise ParseError("PDF is password protected")

        pages = []
        for page in reader.pages:
            page_text = page.extract_text()
            if page_text:
                pages.append(page_text)
        return "\n".join(pages), len(reader.pages)

    except ParseError:
        raise
    except (PyPdfError, ValueError, KeyError, TypeError, AttributeError) as e:
        raise ParseError(f"Unable to decode PDF: {e}") from e


def identify_bank(lines: Sequence[str]) -> str:
    """
    Best-guess issuing bank from statement header/footer markers.

    Header and footer are searched before the body so that a payee named
    after another bank does not win. Unmatched statements are "Unknown".
    """
    regions = [
        list(lines[:HEADER_LINES]) + list(lines[-FOOTER_LINES:]),
        list(lines),
    ]
    for region in regions:
        text = " ".join(region).upper()
        for bank_name, markers in BANK_MARKERS:
            if any(marker in text for marker in markers):
                return bank_name
    return UNKNOWN_BANK


def split_lines(text: str) -> List[str]:
    """Split extracted text into trimmed, non-empty lines"""
    return [line.strip() for line in text.splitlines() if line.strip()]


def parse_statement(data: bytes) -> ParsedStatement:
    """Main entry point: bytes -> lines + bank name"""
    text, page_count = read_pdf_text(data)
    lines = split_lines(text)
    bank_name = identify_bank(lines)

    logger.info(
        "Statement decoded",
        extra={"bank_name": bank_name, "page_count": page_count, "line_count": len(lines)},
    )
    return ParsedStatement(lines=tuple(lines), bank_name=bank_name, page_count=page_count)
