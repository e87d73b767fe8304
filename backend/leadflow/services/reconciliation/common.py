from __future__ import annotations

from sqlalchemy.orm import Session

from leadflow.models.lead import Lead
from leadflow.services.lifecycle import TransitionResult
from leadflow.services.reconciliation.types import RowContext, RowRejected, identifier_data
from leadflow.services.record_matcher import IdentifierBundle, RecordMatcher
from leadflow.services.side_effects import event_for_status


def require_identifier(fields: dict[str, str], keys: tuple[str, ...], message: str) -> None:
    if not any(fields.get(key) for key in keys):
        raise RowRejected(message, identifier_data(fields))


def match_leads(
    session: Session,
    fields: dict[str, str],
    ctx: RowContext,
    matcher: RecordMatcher | None = None,
) -> list[Lead]:
    bundle = IdentifierBundle.from_fields(fields)
    result = (matcher or ctx.matcher).match(session, bundle)
    if not result.matched:
        name = f"{fields.get('first_name', '')} {fields.get('last_name', '')}".strip()
        raise RowRejected(
            f"No matching lead found for {name or 'unknown patient'} ({fields.get('mbi', '')})",
            identifier_data(fields),
        )
    return result.leads


def fill_if_empty(lead: Lead, attr: str, value: str | None) -> bool:
    if value and not getattr(lead, attr):
        setattr(lead, attr, value)
        return True
    return False


def notify_transition(ctx: RowContext, lead: Lead, result: TransitionResult) -> None:
    if result.changed:
        ctx.side_effects.notify(ctx.notifier, lead, event_for_status(result.status))
