from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Sequence

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from leadflow.models.lead import Lead
from leadflow.services.column_aliases import normalize_mbi, normalize_phone

STRATEGY_MBI = "mbi"
STRATEGY_NAME_PHONE = "name_phone"
STRATEGY_PHONE = "phone"
STRATEGY_TRACKING = "tracking"


@dataclass(frozen=True)
class IdentifierBundle:
    mbi: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None
    tracking_number: str | None = None

    @classmethod
    def from_fields(cls, fields: dict[str, str]) -> "IdentifierBundle":
        return cls(
            mbi=fields.get("mbi") or None,
            first_name=fields.get("first_name") or None,
            last_name=fields.get("last_name") or None,
            phone=fields.get("phone") or None,
            tracking_number=fields.get("tracking_number") or fields.get("return_tracking_number") or None,
        )

    def is_empty(self) -> bool:
        return not any((self.mbi, self.first_name, self.last_name, self.phone, self.tracking_number))


@dataclass(frozen=True)
class MatchResult:
    leads: list[Lead]
    strategy: str | None

    @property
    def matched(self) -> bool:
        return bool(self.leads)


MatchStrategy = Callable[[Session, IdentifierBundle], list[Lead]]


def match_by_mbi(session: Session, bundle: IdentifierBundle) -> list[Lead]:
    """Exact match on the MBI as stored: trimmed, dashes and spaces dropped, uppercased."""
    mbi = normalize_mbi(bundle.mbi)
    if not mbi:
        return []
    return list(session.scalars(select(Lead).where(Lead.mbi == mbi).order_by(Lead.id)))


def match_by_name_and_phone(session: Session, bundle: IdentifierBundle) -> list[Lead]:
    first = (bundle.first_name or "").strip()
    last = (bundle.last_name or "").strip()
    phone = normalize_phone(bundle.phone)
    if not first or not last or not phone:
        return []
    stmt = (
        select(Lead)
        .where(
            func.lower(Lead.first_name) == first.lower(),
            func.lower(Lead.last_name) == last.lower(),
            Lead.phone == phone,
        )
        .order_by(Lead.id)
    )
    return list(session.scalars(stmt))


def match_by_phone(session: Session, bundle: IdentifierBundle) -> list[Lead]:
    phone = normalize_phone(bundle.phone)
    if not phone:
        return []
    return list(session.scalars(select(Lead).where(Lead.phone == phone).order_by(Lead.id)))


def match_by_tracking(session: Session, bundle: IdentifierBundle) -> list[Lead]:
    tracking = (bundle.tracking_number or "").strip()
    if not tracking:
        return []
    stmt = (
        select(Lead)
        .where(or_(Lead.tracking_number == tracking, Lead.inbound_tracking_number == tracking))
        .order_by(Lead.id)
    )
    return list(session.scalars(stmt))


DEFAULT_STRATEGIES: tuple[tuple[str, MatchStrategy], ...] = (
    (STRATEGY_MBI, match_by_mbi),
    (STRATEGY_NAME_PHONE, match_by_name_and_phone),
    (STRATEGY_PHONE, match_by_phone),
    (STRATEGY_TRACKING, match_by_tracking),
)
LEAD_IMPORT_STRATEGIES = DEFAULT_STRATEGIES[:2]
TRACKING_STRATEGIES = DEFAULT_STRATEGIES[3:]


class RecordMatcher:
    """Resolves an identifier bundle to leads; the first strategy with a hit wins."""

    def __init__(self, strategies: Sequence[tuple[str, MatchStrategy]] = DEFAULT_STRATEGIES):
        self.strategies = tuple(strategies)

    def match(self, session: Session, bundle: IdentifierBundle) -> MatchResult:
        for name, strategy in self.strategies:
            leads = strategy(session, bundle)
            if leads:
                return MatchResult(leads=leads, strategy=name)
        return MatchResult(leads=[], strategy=None)
