"""
Electronic remittance advice (ERA) parser.

Two inputs are accepted:

- Delimited line items, one per line, ``*``-separated, optional leading ``CLP``
  tag::

      CLP*claim*patient*2024-01-01*100*50*25*CO45,PR1*CHK123*Test Payer

  Fields: claim id, patient id, service date, allowed amount, paid amount,
  adjustment amount, reason codes (comma-separated), check number, payer name.
  The first six are required.

- X12 835 segments (``~``-terminated), recognised by a leading ``ISA``, ``GS``
  or ``ST*835`` segment. ``CLP`` opens a line; ``CAS``, ``REF*1K``
  and ``DTM*232`` refine it; ``TRN*1`` and ``N1*PR`` set the check number and
  payer for the lines that follow.
"""
from datetime import date
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from rcm.utils.decimal_utils import ZERO, parse_financial_amount
from rcm.utils.errors import ERAParseError
from rcm.utils.logger import get_logger

logger = get_logger(__name__)

_NEWLINE_TRANSLATION_TABLE = str.maketrans("", "", "\r\n")

LINE_FIELDS = (
    "claim_id",
    "patient_id",
    "service_date",
    "allowed_amount",
    "paid_amount",
    "adjustment_amount",
    "reason_codes",
    "check_number",
    "payer_name",
)
REQUIRED_LINE_FIELDS = 6
DEFAULT_PAYER_NAME = "Unknown Payer"
X12_LEADING_SEGMENTS = ("ISA*", "GS*", "ST*835*")


class ERALineItem(BaseModel):
    """One adjudicated claim line from a remittance."""

    line_number: int
    claim_id: str
    patient_id: Optional[str] = None
    service_date: Optional[date] = None
    allowed_amount: Decimal = ZERO
    paid_amount: Decimal = ZERO
    adjustment_amount: Decimal = ZERO
    reason_codes: List[str] = Field(default_factory=list)
    check_number: Optional[str] = None
    payer_name: Optional[str] = None
    status_code: Optional[str] = None


class ParsedERA(BaseModel):
    """Parsed remittance and its totals."""

    format: str
    items: List[ERALineItem]
    total_paid: Decimal
    total_adjustments: Decimal


def _amount(value: str, field: str, line_number: int) -> Decimal:
    value = (value or "").strip()
    if not value:
        return ZERO
    amount = parse_financial_amount(value)
    if amount is None:
        raise ERAParseError(f"Invalid {field} on line {line_number}: {value!r}", line_number=line_number)
    return amount


def _service_date(value: str, line_number: int) -> Optional[date]:
    """Accept ISO dates (2024-01-01) and X12 dates (20240101 / 240101)."""
    value = (value or "").strip()
    if not value:
        return None
    try:
        if "-" in value:
            return date.fromisoformat(value)
        if len(value) == 8 and value.isdigit():
            return date(int(value[0:4]), int(value[4:6]), int(value[6:8]))
        if len(value) == 6 and value.isdigit():
            return date(int("20" + value[0:2]), int(value[2:4]), int(value[4:6]))
    except ValueError:
        pass
    raise ERAParseError(f"Invalid service date on line {line_number}: {value!r}", line_number=line_number)


def is_x12(era_data: str) -> bool:
    """X12 input opens with an ISA or GS envelope or an ST*835 transaction set."""
    head = era_data.lstrip().upper()
    return head.startswith(X12_LEADING_SEGMENTS)


def _optional(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


class ERAParser:
    """Turns remittance text into ``ERALineItem`` objects."""

    def parse(self, era_data) -> ParsedERA:
        """
        Parse remittance text.

        Raises:
            ERAParseError: Blank input, malformed line, or non-numeric amount
        """
        if isinstance(era_data, bytes):
            try:
                era_data = era_data.decode("utf-8")
            except UnicodeDecodeError as exc:
                raise ERAParseError("ERA data is not valid UTF-8") from exc
        if not isinstance(era_data, str) or not era_data.strip():
            raise ERAParseError("ERA data is required")

        if is_x12(era_data):
            items = self._parse_x12(era_data)
            fmt = "x12_835"
        else:
            items = self._parse_lines(era_data)
            fmt = "delimited"

        if not items:
            raise ERAParseError("No claim payment lines found in ERA data")

        parsed = ParsedERA(
            format=fmt,
            items=items,
            total_paid=sum((item.paid_amount for item in items), ZERO),
            total_adjustments=sum((item.adjustment_amount for item in items), ZERO),
        )
        logger.info(
            "ERA parsed",
            format=fmt,
            line_count=len(items),
            total_paid=str(parsed.total_paid),
            total_adjustments=str(parsed.total_adjustments),
        )
        return parsed

    def _parse_lines(self, era_data: str) -> List[ERALineItem]:
        items = []
        for line_number, raw_line in enumerate(era_data.splitlines(), start=1):
            line = raw_line.strip()
            if not line:
                continue
            fields = line.split("*")
            if fields[0].strip().upper() == "CLP":
                fields = fields[1:]
            if len(fields) < REQUIRED_LINE_FIELDS:
                raise ERAParseError(
                    f"Line {line_number} has {len(fields)} fields, expected at least {REQUIRED_LINE_FIELDS}",
                    line_number=line_number,
                )
            fields = fields + [""] * (len(LINE_FIELDS) - len(fields))
            claim_id = fields[0].strip()
            if not claim_id:
                raise ERAParseError(f"Missing claim id on line {line_number}", line_number=line_number)

            items.append(
                ERALineItem(
                    line_number=line_number,
                    claim_id=claim_id,
                    patient_id=_optional(fields[1]),
                    service_date=_service_date(fields[2], line_number),
                    allowed_amount=_amount(fields[3], "allowed amount", line_number),
                    paid_amount=_amount(fields[4], "paid amount", line_number),
                    adjustment_amount=_amount(fields[5], "adjustment amount", line_number),
                    reason_codes=[code.strip() for code in fields[6].split(",") if code.strip()],
                    check_number=_optional(fields[7]),
                    payer_name=_optional(fields[8]),
                )
            )
        return items

    def _parse_x12(self, era_data: str) -> List[ERALineItem]:
        content = era_data.translate(_NEWLINE_TRANSLATION_TABLE)
        segments = [segment.strip().split("*") for segment in content.split("~") if segment.strip()]

        items: List[ERALineItem] = []
        current: Optional[ERALineItem] = None
        check_number: Optional[str] = None
        payer_name: Optional[str] = None

        for segment_number, elements in enumerate(segments, start=1):
            segment_id = elements[0].upper()

            if segment_id == "CLP":
                if len(elements) < 5 or not elements[1].strip():
                    raise ERAParseError(
                        f"Malformed CLP segment {segment_number}", line_number=segment_number
                    )
                current = ERALineItem(
                    line_number=segment_number,
                    claim_id=elements[1].strip(),
                    status_code=_optional(elements[2]),
                    allowed_amount=_amount(elements[3], "billed amount", segment_number),
                    paid_amount=_amount(elements[4], "paid amount", segment_number),
                    check_number=check_number,
                    payer_name=payer_name or DEFAULT_PAYER_NAME,
                )
                items.append(current)

            elif segment_id == "CAS" and current is not None:
                group_code = elements[1].strip() if len(elements) > 1 else ""
                # Reason/amount/quantity triplets starting at element 2
                for index in range(2, len(elements) - 1, 3):
                    reason = elements[index].strip()
                    if not reason:
                        continue
                    adjustment = _amount(elements[index + 1], "adjustment amount", segment_number)
                    current.adjustment_amount += adjustment
                    current.reason_codes.append(f"{group_code}-{reason}" if group_code else reason)

            elif segment_id == "REF" and current is not None and len(elements) > 2:
                if elements[1] == "1K":
                    current.patient_id = _optional(elements[2])

            elif segment_id == "DTM" and current is not None and len(elements) > 2:
                if elements[1] == "232":
                    current.service_date = _service_date(elements[2], segment_number)

            elif segment_id == "TRN" and len(elements) > 2 and elements[1] == "1":
                check_number = _optional(elements[2])
                if current is not None:
                    current.check_number = check_number

            elif segment_id == "N1" and len(elements) > 2 and elements[1] == "PR":
                payer_name = _optional(elements[2])
                if current is not None:
                    current.payer_name = payer_name or DEFAULT_PAYER_NAME

        return items
