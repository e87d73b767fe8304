from __future__ import annotations

import logging
import re

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from leadflow.models.vendor import Vendor

logger = logging.getLogger(__name__)

FALLBACK_VENDOR_CODE = "BULK_UPLOAD"
FALLBACK_VENDOR_NAME = "Bulk Upload"

KNOWN_LAB_CODES = {
    "Areahou": "AREAHOU",
    "R & R Labs": "RR_LABS",
    "AlphaDera": "ALPHADERA",
    "RTM GEN X": "RTM_GENX",
    "GENX": "GENX",
    "GEN X": "GENX",
    "RTM": "RTM",
    "JOLU": "JOLU",
    "JO-LU": "JOLU",
}

_NON_ALNUM = re.compile(r"[^A-Z0-9]+")


def vendor_code_for(label: str | None) -> str:
    """Vendor code for a free-text lab/platform label.

    Known lab names map to their fixed codes, anything else is slugged
    ("Acme Labs, Inc" -> "ACME_LABS_INC"), and an empty label falls back to
    BULK_UPLOAD.
    """
    label = (label or "").strip()
    if not label:
        return FALLBACK_VENDOR_CODE
    if label in KNOWN_LAB_CODES:
        return KNOWN_LAB_CODES[label]
    slug = _NON_ALNUM.sub("_", label.upper()).strip("_")
    return slug[:64] or FALLBACK_VENDOR_CODE


def resolve_or_create_vendor(
    session: Session, label: str | None, cache: dict[str, int] | None = None
) -> Vendor:
    label = (label or "").strip()
    if cache is not None and label in cache:
        cached = session.get(Vendor, cache[label])
        if cached is not None:
            return cached

    code = vendor_code_for(label)
    vendor = session.scalar(select(Vendor).where(Vendor.code == code))
    if vendor is None and label:
        vendor = session.scalar(
            select(Vendor).where(func.lower(Vendor.name) == label.lower()).order_by(Vendor.id)
        )
    if vendor is None:
        vendor = Vendor(name=label or FALLBACK_VENDOR_NAME, code=code, is_active=True)
        session.add(vendor)
        session.flush()
        logger.info("Created vendor %s for label %r", code, label)

    if cache is not None:
        cache[label] = vendor.id
    return vendor
