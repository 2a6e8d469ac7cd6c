"""FastAPI dependency providers for the allocator and the state machine."""
from fastapi import Depends
from sqlalchemy.orm import Session, sessionmaker

from tramites.config import Settings, settings
from tramites.database import get_db
from tramites.services.consecutivo_allocator import ConsecutivoAllocator
from tramites.services.storage import ArtifactStorage, LocalArtifactStorage
from tramites.services.tramite_service import TramiteStateMachine


def get_settings() -> Settings:
    return settings


def get_storage(config: Settings = Depends(get_settings)) -> ArtifactStorage:
    return LocalArtifactStorage(config.STORAGE_ROOT)


def get_allocator(db: Session = Depends(get_db), config: Settings = Depends(get_settings)) -> ConsecutivoAllocator:
    """Allocator sessions share the request session's engine but never its transaction."""
    return ConsecutivoAllocator(sessionmaker(bind=db.get_bind(), autoflush=False), config)


def get_state_machine(
    db: Session = Depends(get_db),
    allocator: ConsecutivoAllocator = Depends(get_allocator),
    storage: ArtifactStorage = Depends(get_storage),
    config: Settings = Depends(get_settings),
) -> TramiteStateMachine:
    return TramiteStateMachine(db, allocator, storage, max_upload_bytes=config.MAX_UPLOAD_MB * 1024 * 1024)
