"""Overdue ("atrasado") evaluation over the history ledger.

A rule (from_state, to_state, threshold_days) is breached when the trámite
last moved into ``from_state`` more than ``threshold_days`` whole days ago and
has not moved into ``to_state`` since.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from tramites.models.alert_rule import AlertRule
from tramites.models.history import TramiteHistory
from tramites.models.tramite import Tramite, TramiteState, CANCELLED_STATE
from tramites.services.history_ledger import as_utc

logger = logging.getLogger(__name__)

Transition = tuple[Optional[TramiteState], TramiteState, datetime]


@dataclass(frozen=True)
class Breach:
    rule_name: str
    rule_text: str
    days_late: int


def _rule_text(rule: AlertRule) -> str:
    return f"{rule.from_state.value} -> {rule.to_state.value} > {rule.threshold_days} days"


def worst_breach(transitions: list[Transition], rules: Iterable[AlertRule], now: datetime) -> Optional[Breach]:
    """Return the most overdue rule for one trámite, or None."""
    worst = None
    for rule in rules:
        entered = [changed_at for _, to_state, changed_at in transitions if to_state == rule.from_state]
        if not entered:
            continue
        last_from = entered[-1]

        if any(to_state == rule.to_state and changed_at > last_from for _, to_state, changed_at in transitions):
            continue

        days = (now - last_from).days
        days_late = days - rule.threshold_days
        if days_late > 0 and (worst is None or days_late > worst.days_late):
            worst = Breach(rule_name=rule.name, rule_text=_rule_text(rule), days_late=days_late)
    return worst


def active_rules(db: Session) -> list[AlertRule]:
    return db.query(AlertRule).filter(AlertRule.is_active.is_(True)).all()


def transitions_by_tramite(db: Session, tramite_ids: list[str]) -> dict[str, list[Transition]]:
    """Load ordered transitions for many trámites in one query."""
    grouped: dict[str, list[Transition]] = {tid: [] for tid in tramite_ids}
    if not tramite_ids:
        return grouped

    rows = (
        db.query(TramiteHistory)
        .filter(TramiteHistory.tramite_id.in_(tramite_ids))
        .order_by(TramiteHistory.changed_at, TramiteHistory.history_id)
        .all()
    )
    for row in rows:
        grouped[row.tramite_id].append((row.from_state, row.to_state, as_utc(row.changed_at)))
    return grouped


def overdue_map(db: Session, tramites: list[Tramite], now: Optional[datetime] = None) -> dict[str, Optional[Breach]]:
    """Worst breach (or None) keyed by trámite id."""
    now = now or datetime.now(timezone.utc)
    rules = active_rules(db)
    history = transitions_by_tramite(db, [t.tramite_id for t in tramites])
    return {t.tramite_id: worst_breach(history[t.tramite_id], rules, now) for t in tramites}


def list_overdue(db: Session, now: Optional[datetime] = None) -> list[tuple[Tramite, Breach]]:
    """All non-cancelled trámites currently breaching a rule, newest first."""
    tramites = (
        db.query(Tramite)
        .filter(Tramite.state != CANCELLED_STATE)
        .order_by(Tramite.created_at.desc())
        .all()
    )
    breaches = overdue_map(db, tramites, now)
    result = [(t, breaches[t.tramite_id]) for t in tramites if breaches[t.tramite_id] is not None]
    logger.info("Overdue check: %d of %d trámites late", len(result), len(tramites))
    return result
