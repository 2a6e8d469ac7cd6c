"""History ledger — append-only state transitions of a trámite.

Timestamps are strictly increasing per trámite so that ordering by
``changed_at`` reconstructs the trajectory; insertion id breaks any tie left
in imported data.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy.orm import Session

from tramites.models.history import ActionType, TramiteHistory
from tramites.models.tramite import Tramite, TramiteState

_TICK = timedelta(microseconds=1)


def as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _next_timestamp(db: Session, tramite_id: str) -> datetime:
    now = datetime.now(timezone.utc)
    last = (
        db.query(TramiteHistory.changed_at)
        .filter(TramiteHistory.tramite_id == tramite_id)
        .order_by(TramiteHistory.changed_at.desc(), TramiteHistory.history_id.desc())
        .first()
    )
    if last is not None and as_utc(last.changed_at) >= now:
        return as_utc(last.changed_at) + _TICK
    return now


def append_entry(
    db: Session,
    tramite: Tramite,
    from_state: Optional[TramiteState],
    to_state: TramiteState,
    actor: str,
    notes: Optional[str] = None,
    action_type: ActionType = ActionType.NORMAL,
) -> TramiteHistory:
    """Add a history row to the session. Does NOT commit."""
    entry = TramiteHistory(
        tramite_id=tramite.tramite_id,
        from_state=from_state,
        to_state=to_state,
        actor=actor,
        changed_at=_next_timestamp(db, tramite.tramite_id),
        notes=notes,
        action_type=action_type,
    )
    db.add(entry)
    db.flush()
    return entry


def list_entries(db: Session, tramite_id: str) -> list[TramiteHistory]:
    return (
        db.query(TramiteHistory)
        .filter(TramiteHistory.tramite_id == tramite_id)
        .order_by(TramiteHistory.changed_at, TramiteHistory.history_id)
        .all()
    )


def list_transitions(db: Session, tramite_id: str) -> list[tuple[Optional[TramiteState], TramiteState, datetime]]:
    """Ordered ``(from_state, to_state, changed_at)`` tuples for SLA consumers."""
    return [(e.from_state, e.to_state, as_utc(e.changed_at)) for e in list_entries(db, tramite_id)]
