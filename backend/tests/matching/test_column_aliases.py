from datetime import date

import pytest

from leadflow.models.lead import DoctorApprovalStatus, LeadTestType
from leadflow.services.column_aliases import (
    classify_approval,
    map_test_type,
    normalize_phone,
    parse_date,
    resolve_fields,
    split_full_name,
    validate_mbi,
)
from leadflow.services.errors import RowValidationError


def test_resolve_fields_from_vendor_headers():
    fields = resolve_fields(
        {
            "Medicare #:": "1EG4-TE5-MK73",
            "Patient Name": "LEE, ANN MARIE",
            "Phone Number:": "(202) 555-0111",
            "DOB": "04/05/48",
            "Tracking # to Patient": "1Z999",
            "Return Tracking #": "1Z888",
            "Lab:": "GENX",
        }
    )
    assert fields["mbi"] == "1EG4-TE5-MK73"
    assert fields["first_name"] == "ANN"
    assert fields["last_name"] == "LEE"
    assert fields["tracking_number"] == "1Z999"
    assert fields["return_tracking_number"] == "1Z888"
    assert fields["lab"] == "GENX"
    assert fields["approval_date"] == ""


def test_split_full_name_orders():
    assert split_full_name("Ann Marie Lee") == ("Ann", "Lee")
    assert split_full_name("Lee, Ann") == ("Ann", "Lee")
    assert split_full_name("") == ("", "")


def test_validate_mbi():
    assert validate_mbi(" 9ab3-xy7-mk21 ") == "9AB3XY7MK21"
    with pytest.raises(RowValidationError):
        validate_mbi("0AB3XY7MK21")
    with pytest.raises(RowValidationError):
        validate_mbi("9AB3")


def test_normalize_phone():
    assert normalize_phone("(202) 555-0111") == "2025550111"
    assert normalize_phone("+1 202 555 0111") == "2025550111"
    assert normalize_phone("555-0111") is None
    assert normalize_phone("") is None


def test_parse_date_formats():
    assert parse_date("04/05/48") == date(1948, 4, 5)
    assert parse_date("04/05/24") == date(2024, 4, 5)
    assert parse_date("2024-04-05") == date(2024, 4, 5)
    assert parse_date("4/5/2024") == date(2024, 4, 5)
    assert parse_date("") is None


def test_two_digit_years_never_land_in_the_future():
    today = date(2026, 10, 18)
    assert parse_date("10/18/26", today=today) == date(2026, 10, 18)
    assert parse_date("12/31/26", today=today) == date(1926, 12, 31)
    assert parse_date("02/29/00", today=today) == date(2000, 2, 29)
    assert parse_date("01/02/59", "date_of_birth", today=today) == date(1959, 1, 2)


def test_parse_date_rejects_garbage():
    with pytest.raises(RowValidationError) as excinfo:
        parse_date("13/45/2020", "date_of_birth")
    assert excinfo.value.field == "date_of_birth"
    assert excinfo.value.raw == "13/45/2020"


def test_classify_approval_and_test_type():
    assert classify_approval("Approved") == DoctorApprovalStatus.approved
    assert classify_approval("DENIED") == DoctorApprovalStatus.declined
    assert classify_approval("awaiting review") == DoctorApprovalStatus.pending
    assert map_test_type("Neuro panel") == LeadTestType.neuro
    assert map_test_type("", default=LeadTestType.neuro) == LeadTestType.neuro


@pytest.mark.parametrize(
    "text",
    ["Not Approved", "NOT APPROVED", "Disapproved", "Unapproved", "Rejected", "not-approved by MD"],
)
def test_negated_approval_is_declined(text):
    assert classify_approval(text) == DoctorApprovalStatus.declined


def test_plain_yes_and_no():
    assert classify_approval("yes") == DoctorApprovalStatus.approved
    assert classify_approval(" No ") == DoctorApprovalStatus.declined
