"""Header aliasing and value normalisation for uploaded spreadsheets.

Vendors, labs and carriers each export their own column names. The alias table
maps those onto the semantic fields the reconciliation handlers work with.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Mapping

import phonenumbers

from leadflow.models.lead import DoctorApprovalStatus, LeadTestType
from leadflow.services.errors import RowValidationError

MBI_PATTERN = re.compile(r"^[1-9][A-Z0-9]{10}$")
_MBI_SEPARATORS = re.compile(r"[\s-]+")
_NON_DIGIT = re.compile(r"\D+")


@dataclass(frozen=True)
class ColumnAlias:
    field: str
    aliases: tuple[str, ...]
    exclude: tuple[str, ...] = field(default_factory=tuple)


COLUMN_ALIASES: tuple[ColumnAlias, ...] = (
    ColumnAlias(
        "mbi",
        ("mbi", "mbi#", "medicare #", "medicare #:", "medicare_id", "medicare", "patient_id"),
    ),
    ColumnAlias(
        "first_name",
        ("first_name", "firstname", "first name", "patient first na", "fname", "first"),
    ),
    ColumnAlias(
        "last_name",
        ("last_name", "lastname", "last name", "patient last na", "lname", "last"),
    ),
    ColumnAlias("full_name", ("pt_full_name", "full_name", "full name", "patient name", "name")),
    ColumnAlias(
        "phone",
        ("phone", "phone_number", "phone number", "phone number:", "telephone", "tel"),
    ),
    ColumnAlias("email", ("email", "e-mail", "email address")),
    ColumnAlias("date_of_birth", ("dob", "date of birth", "date_of_birth", "birth date")),
    ColumnAlias("street", ("address", "street", "street address")),
    ColumnAlias("city", ("city",)),
    ColumnAlias("state", ("state",)),
    ColumnAlias("zip_code", ("zip", "zip_code", "zipcode", "postal code")),
    ColumnAlias(
        "tracking_number",
        (
            "tracking_number",
            "tracking number",
            "tracking # to patient",
            "trackingnumber",
            "shipment_id",
            "tracking",
        ),
        exclude=("return",),
    ),
    ColumnAlias(
        "return_tracking_number",
        ("return_tracking", "return tracking #", "return tracking number", "return_tracking_number"),
    ),
    ColumnAlias(
        "shipped_date",
        ("shipped_date", "shipped date", "ship_date", "date_shipped", "shipment_date"),
    ),
    ColumnAlias(
        "returned_date",
        (
            "returned_date",
            "returned date",
            "return_date",
            "date_returned",
            "completion_date",
            "completed_date",
        ),
    ),
    ColumnAlias(
        "approval_date",
        ("date_seen", "approval_date", "decision_date", "date"),
        exclude=("birth", "dob", "ship", "return", "deliver"),
    ),
    ColumnAlias(
        "approval_status",
        ("status", "approval_status", "decision", "approval", "approved"),
        exclude=("delivery", "completion", "date"),
    ),
    ColumnAlias(
        "completion_status",
        ("completion_status", "completed", "status"),
        exclude=("delivery", "approval", "date"),
    ),
    ColumnAlias("test_type", ("test_type", "test type", "test :", "test", "kit_type", "kit type")),
    ColumnAlias(
        "lab",
        ("lab", "lab:", "platform:", "vendor_code", "vendor code", "vendor"),
        exclude=("label",),
    ),
    ColumnAlias("delivery_status", ("delivery status", "delivery_status")),
    ColumnAlias("notes", ("notes for you", "notes", "other")),
    ColumnAlias("carrier", ("carrier", "shipping_carrier", "shipper")),
)


def _clean(value) -> str:
    if value is None:
        return ""
    return str(value).strip()


def resolve_field(row: Mapping[str, object], alias: ColumnAlias) -> str:
    headers = [(key, _clean(key).lower()) for key in row.keys() if key is not None]

    for candidate in alias.aliases:
        for key, header in headers:
            if header == candidate:
                value = _clean(row.get(key))
                if value:
                    return value

    for candidate in alias.aliases:
        for key, header in headers:
            if candidate not in header:
                continue
            if any(token in header for token in alias.exclude):
                continue
            value = _clean(row.get(key))
            if value:
                return value
    return ""


def resolve_fields(
    row: Mapping[str, object], aliases: tuple[ColumnAlias, ...] = COLUMN_ALIASES
) -> dict[str, str]:
    fields = {alias.field: resolve_field(row, alias) for alias in aliases}
    if not fields.get("first_name") and not fields.get("last_name") and fields.get("full_name"):
        first, last = split_full_name(fields["full_name"])
        fields["first_name"] = first
        fields["last_name"] = last
    return fields


def split_full_name(value: str) -> tuple[str, str]:
    """Split "LAST, FIRST MIDDLE" or "FIRST MIDDLE LAST" into (first, last)."""
    value = _clean(value)
    if not value:
        return "", ""
    if "," in value:
        last_part, _, first_part = value.partition(",")
        first_words = first_part.split()
        return (first_words[0] if first_words else ""), last_part.strip()
    parts = value.split()
    if len(parts) == 1:
        return parts[0], ""
    return parts[0], parts[-1]


def clean_mbi(value) -> str:
    return _MBI_SEPARATORS.sub("", _clean(value))


def normalize_mbi(value) -> str:
    return clean_mbi(value).upper()


def validate_mbi(value) -> str:
    mbi = normalize_mbi(value)
    if not MBI_PATTERN.match(mbi):
        raise RowValidationError("mbi", value, "MBI must be 11 characters starting with a digit 1-9")
    return mbi


def normalize_phone(value, region: str = "US") -> str | None:
    raw = _clean(value)
    if not raw:
        return None
    try:
        parsed = phonenumbers.parse(raw, region)
    except phonenumbers.NumberParseException:
        parsed = None
    if parsed is not None and phonenumbers.is_possible_number(parsed):
        national = str(parsed.national_number)
        if len(national) == 10:
            return national
    digits = _NON_DIGIT.sub("", raw)
    if len(digits) >= 10:
        return digits[-10:]
    return None


_DATE_FORMATS = (
    "%Y-%m-%d",
    "%m/%d/%Y",
    "%m-%d-%Y",
    "%Y%m%d",
    "%Y/%m/%d",
    "%b %d, %Y",
    "%B %d, %Y",
    "%d %b %Y",
)
_SHORT_US_DATE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{2})$")


def parse_date(value, field_name: str = "date", *, today: date | None = None) -> date | None:
    """Parse a spreadsheet date.

    Two-digit years resolve to the most recent century that does not put the
    date after ``today``, so "04/05/48" is 1948 and "04/05/24" is 2024.
    """
    raw = _clean(value)
    if not raw:
        return None

    short = _SHORT_US_DATE.match(raw)
    if short:
        month, day, year = (int(part) for part in short.groups())
        today = today or date.today()
        try:
            parsed = date(2000 + year, month, day)
            if parsed > today:
                parsed = date(1900 + year, month, day)
        except ValueError as exc:
            raise RowValidationError(field_name, raw) from exc
        return parsed

    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(raw, fmt).date()
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(raw).date()
    except ValueError as exc:
        raise RowValidationError(field_name, raw) from exc


def parse_datetime(value, field_name: str = "date") -> datetime | None:
    parsed = parse_date(value, field_name)
    if parsed is None:
        return None
    return datetime(parsed.year, parsed.month, parsed.day, tzinfo=timezone.utc)


_APPROVE_TOKENS = ("approve",)
_NEGATED_APPROVAL_TOKENS = ("not approve", "not-approve", "disapprov", "unapprov", "reject")
_DECLINE_TOKENS = ("deny", "denied", "decline")


def classify_approval(*values) -> DoctorApprovalStatus:
    lowered = [_clean(value).lower() for value in values]
    for text in lowered:
        if any(token in text for token in _NEGATED_APPROVAL_TOKENS):
            return DoctorApprovalStatus.declined
    for text in lowered:
        if any(token in text for token in _APPROVE_TOKENS) or text == "yes":
            return DoctorApprovalStatus.approved
    for text in lowered:
        if any(token in text for token in _DECLINE_TOKENS) or text == "no":
            return DoctorApprovalStatus.declined
    return DoctorApprovalStatus.pending


def map_test_type(value, default: LeadTestType = LeadTestType.immune) -> LeadTestType:
    text = _clean(value).upper()
    if text.startswith("NEURO"):
        return LeadTestType.neuro
    if text.startswith("IMMUN"):
        return LeadTestType.immune
    return default
