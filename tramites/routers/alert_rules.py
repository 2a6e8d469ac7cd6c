"""Overdue alert rule API routes."""
import logging
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from tramites.database import get_db
from tramites.errors import Conflict, ValidationFailed
from tramites.models.alert_rule import AlertRule
from tramites.schemas.alert_rule import AlertRuleCreate, AlertRuleOut

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/", response_model=AlertRuleOut, status_code=status.HTTP_201_CREATED)
def create_alert_rule(payload: AlertRuleCreate, db: Session = Depends(get_db)):
    if payload.from_state == payload.to_state:
        raise ValidationFailed(
            "from_state and to_state must differ.",
            {"from_state": payload.from_state.value, "to_state": payload.to_state.value},
        )
    if db.query(AlertRule).filter(AlertRule.name == payload.name).first():
        raise Conflict(f"Alert rule '{payload.name}' already exists.", {"name": payload.name})

    rule = AlertRule(**payload.model_dump())
    db.add(rule)
    db.commit()
    db.refresh(rule)
    logger.info("Created alert rule '%s'", rule.name)
    return rule


@router.get("/", response_model=list[AlertRuleOut])
def list_alert_rules(db: Session = Depends(get_db)):
    return db.query(AlertRule).order_by(AlertRule.name).all()
