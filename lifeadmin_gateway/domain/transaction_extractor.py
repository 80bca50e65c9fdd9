"""Transaction extraction - column segmentation of statement lines"""

import re
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import List, Optional, Pattern, Sequence, Tuple

from lifeadmin_gateway.domain.models import ExtractionResult, Transaction

MONEY = r"£?(?:\d{1,3}(?:,\d{3})+|\d+)\.\d{2}"
NUMERIC_DATE = r"\d{1,2}[/-]\d{1,2}[/-]\d{2,4}"
ISO_DATE = r"\d{4}-\d{2}-\d{2}"
TEXT_DATE = r"\d{1,2}\s+[A-Za-z]{3,9}\s+\d{2,4}"

DEBIT_MARKERS = {"DR", "O/D", "OD"}
CREDIT_MARKERS = {"CR"}

# Unmarked amounts are debits unless the description reads like money in
CREDIT_KEYWORDS = (
    "SALARY",
    "WAGES",
    "REFUND",
    "INTEREST PAID",
    "BGC",
    "PAYMENT RECEIVED",
    "DIVIDEND",
    "TRANSFER FROM",
)

BALANCE_ROWS = ("BROUGHT FORWARD", "CARRIED FORWARD", "OPENING BALANCE", "CLOSING BALANCE")

TEXT_DATE_FORMATS = ("%d %b %Y", "%d %B %Y", "%d %b %y", "%d %B %y")


@dataclass(frozen=True)
class LineFormat:
    """Regex describing one bank's transaction row"""

    name: str
    pattern: Pattern[str]
    type_prefix: bool = False  # payment type code precedes the description


BARCLAYS_FORMAT = LineFormat(
    name="Barclays",
    pattern=re.compile(
        rf"^(?P<date>\d{{1,2}}\s+[A-Za-z]{{3}}\s+\d{{4}})\s+(?P<desc>.+?)\s+(?P<amount>{MONEY})"
        rf"(?:\s+(?P<marker>O/D|CR|DR))?(?:\s+(?P<balance>{MONEY}))?$"
    ),
)

HSBC_FORMAT = LineFormat(
    name="HSBC",
    pattern=re.compile(
        rf"^(?P<date>\d{{1,2}}\s+[A-Za-z]{{3}}\s+\d{{2}})\s+(?P<type>DD|SO|VIS|OBP|CR|BP|ATM|TFR|DR)\s+"
        rf"(?P<desc>.+?)\s+(?P<amount>{MONEY})(?:\s+(?P<balance>{MONEY}))?$"
    ),
    type_prefix=True,
)

GENERIC_FORMAT = LineFormat(
    name="Generic",
    pattern=re.compile(
        rf"^(?P<date>{NUMERIC_DATE}|{ISO_DATE}|{TEXT_DATE})\s+(?P<desc>.+?)\s+"
        rf"(?P<amount>[-+]?\(?{MONEY}\)?)(?:\s*(?P<marker>CR|DR|O/D))?"
        rf"(?:\s+(?P<balance>-?{MONEY})(?:\s*(?:CR|DR|OD))?)?$"
    ),
)

BANK_FORMATS = {
    "Barclays": (BARCLAYS_FORMAT,),
    "HSBC": (HSBC_FORMAT,),
}

ACCOUNT_NUMBER_RE = re.compile(r"Account\s+(?:Number|No\.?)[:\s]+(\d{6,12})", re.IGNORECASE)
SORT_CODE_RE = re.compile(r"Sort\s+Code[:\s]+(\d{2}[-\s]?\d{2}[-\s]?\d{2})", re.IGNORECASE)
PERIOD_RE = re.compile(
    rf"Statement\s+Period[:\s]+({NUMERIC_DATE}|{TEXT_DATE})\s+(?:to|-)\s+({NUMERIC_DATE}|{TEXT_DATE})",
    re.IGNORECASE,
)


def _expand_year(year: int) -> int:
    if year < 100:
        return year + (2000 if year < 50 else 1900)
    return year


def parse_statement_date(value: str) -> Optional[date]:
    """Normalise UK numeric, ISO and month-name dates; None when invalid"""
    value = " ".join(value.split())

    if re.fullmatch(ISO_DATE, value):
        try:
            return date.fromisoformat(value)
        except ValueError:
            return None

    if re.fullmatch(NUMERIC_DATE, value):
        day, month, year = (int(part) for part in re.split(r"[/-]", value))
        try:
            return date(_expand_year(year), month, day)
        except ValueError:
            return None

    for fmt in TEXT_DATE_FORMATS:
        try:
            parsed = datetime.strptime(value.title(), fmt).date()
        except ValueError:
            continue
        # strptime pivots %y at 69; keep the same pivot as numeric dates
        if fmt.endswith("%y"):
            parsed = parsed.replace(year=_expand_year(parsed.year % 100))
        return parsed

    return None


def parse_money(token: str) -> Decimal:
    """Parse '£1,234.50' style tokens; sign and parentheses are handled by the caller"""
    cleaned = token.strip().lstrip("+-").strip("()").replace("£", "").replace(",", "")
    try:
        return Decimal(cleaned)
    except InvalidOperation as e:
        raise ValueError(f"Not an amount: {token!r}") from e


def signed_amount(token: str, marker: Optional[str], description: str) -> Decimal:
    """
    Apply debit/credit conventions to a raw amount token.

    Explicit '-', parentheses, DR or O/D make a debit; '+' or CR a credit.
    Unmarked amounts are debits unless the description carries a credit keyword.
    """
    value = parse_money(token)
    token = token.strip()
    marker = (marker or "").upper()

    if token.startswith("-") or token.startswith("(") or marker in DEBIT_MARKERS:
        return -value
    if token.startswith("+") or marker in CREDIT_MARKERS:
        return value

    upper = description.upper()
    if any(keyword in upper for keyword in CREDIT_KEYWORDS):
        return value
    return -value


def _match_line(line: str, formats: Sequence[LineFormat]) -> Optional[Transaction]:
    for line_format in formats:
        match = line_format.pattern.match(line)
        if not match:
            continue

        txn_date = parse_statement_date(match.group("date"))
        if txn_date is None:
            continue

        description = " ".join(match.group("desc").split())
        if line_format.type_prefix:
            description = f"{match.group('type')} {description}"
        if not description or any(row in description.upper() for row in BALANCE_ROWS):
            return None

        groups = match.groupdict()
        marker = groups.get("marker")
        if line_format.type_prefix and match.group("type") == "CR":
            marker = "CR"

        amount = signed_amount(match.group("amount"), marker, description)
        balance = parse_money(groups["balance"]) if groups.get("balance") else None

        return Transaction(
            date=txn_date,
            description=description,
            amount=amount,
            original_text=line,
            balance=balance,
        )
    return None


def _formats_for(bank_name: str) -> Tuple[LineFormat, ...]:
    return BANK_FORMATS.get(bank_name, ()) + (GENERIC_FORMAT,)


def extract_metadata(text: str) -> dict:
    """Account number (masked), sort code and statement period"""
    metadata: dict = {}

    account = ACCOUNT_NUMBER_RE.search(text)
    if account:
        metadata["account_number"] = f"****{account.group(1)[-4:]}"

    sort_code = SORT_CODE_RE.search(text)
    if sort_code:
        digits = re.sub(r"\D", "", sort_code.group(1))
        metadata["sort_code"] = f"{digits[0:2]}-{digits[2:4]}-{digits[4:6]}"

    period = PERIOD_RE.search(text)
    if period:
        metadata["period_start"] = parse_statement_date(period.group(1))
        metadata["period_end"] = parse_statement_date(period.group(2))

    return metadata


def extract_transactions(lines: Sequence[str], bank_name: str) -> ExtractionResult:
    """
    Turn parser lines into structured transactions.

    Lines matching no known row layout are skipped; statement order is kept.
    """
    formats = _formats_for(bank_name)
    transactions: List[Transaction] = []

    for line in lines:
        transaction = _match_line(line.strip(), formats)
        if transaction is not None:
            transactions.append(transaction)

    metadata = extract_metadata("\n".join(lines))
    return ExtractionResult(transactions=tuple(transactions), **metadata)
