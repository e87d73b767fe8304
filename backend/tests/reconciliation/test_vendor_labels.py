from leadflow.models.vendor import Vendor
from leadflow.services.reconciliation.vendors import (
    FALLBACK_VENDOR_CODE,
    resolve_or_create_vendor,
    vendor_code_for,
)


def test_vendor_codes_for_labels():
    assert vendor_code_for("R & R Labs") == "RR_LABS"
    assert vendor_code_for("JO-LU") == "JOLU"
    assert vendor_code_for("Acme Labs, Inc") == "ACME_LABS_INC"
    assert vendor_code_for("  ") == FALLBACK_VENDOR_CODE
    assert vendor_code_for(None) == FALLBACK_VENDOR_CODE
    assert vendor_code_for("!!!") == FALLBACK_VENDOR_CODE


def test_existing_vendor_found_by_name(session, vendor):
    assert resolve_or_create_vendor(session, "acme labs").id == vendor.id


def test_new_vendor_created_once(session):
    cache: dict[str, int] = {}
    first = resolve_or_create_vendor(session, "Brand New Lab", cache)
    second = resolve_or_create_vendor(session, "Brand New Lab", cache)
    session.commit()

    assert first.id == second.id
    assert first.code == "BRAND_NEW_LAB"
    assert cache == {"Brand New Lab": first.id}
    assert session.query(Vendor).count() == 1


def test_blank_label_uses_bulk_upload_vendor(session):
    vendor = resolve_or_create_vendor(session, "")
    assert vendor.code == FALLBACK_VENDOR_CODE
    assert vendor.name == "Bulk Upload"
