"""Agency catalog API routes."""
import logging
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from tramites.database import get_db
from tramites.errors import Conflict
from tramites.models.agency import Agency
from tramites.schemas.agency import AgencyCreate, AgencyOut

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/", response_model=AgencyOut, status_code=status.HTTP_201_CREATED)
def create_agency(payload: AgencyCreate, db: Session = Depends(get_db)):
    """Register an agency. Codes are stored upper-case and must be unique."""
    code = payload.code.strip().upper()
    if db.query(Agency).filter(Agency.code == code).first():
        raise Conflict(f"Agency code '{code}' already exists.", {"code": code})

    agency = Agency(code=code, name=payload.name.strip())
    db.add(agency)
    db.commit()
    db.refresh(agency)
    logger.info("Created agency %s (%s)", agency.code, agency.agency_id)
    return agency


@router.get("/", response_model=list[AgencyOut])
def list_agencies(db: Session = Depends(get_db)):
    return db.query(Agency).order_by(Agency.code).all()
