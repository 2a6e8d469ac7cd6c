"""Document catalog API routes."""
import logging
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from tramites.database import get_db
from tramites.errors import Conflict
from tramites.models.document import DocumentType
from tramites.schemas.document import DocumentTypeCreate, DocumentTypeOut

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/", response_model=DocumentTypeOut, status_code=status.HTTP_201_CREATED)
def create_document_type(payload: DocumentTypeCreate, db: Session = Depends(get_db)):
    """Register a document kind. New trámites copy active kinds into their checklist."""
    key = payload.key.strip().upper()
    if db.query(DocumentType).filter(DocumentType.key == key).first():
        raise Conflict(f"Document key '{key}' already exists.", {"key": key})

    doc_type = DocumentType(key=key, name=payload.name.strip(), required=payload.required)
    db.add(doc_type)
    db.commit()
    db.refresh(doc_type)
    logger.info("Created document type %s", doc_type.key)
    return doc_type


@router.get("/", response_model=list[DocumentTypeOut])
def list_document_types(db: Session = Depends(get_db)):
    return db.query(DocumentType).order_by(DocumentType.key).all()
