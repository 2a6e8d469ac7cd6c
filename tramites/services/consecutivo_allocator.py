"""Consecutivo allocator — smallest free number per (agency, year).

Responsibilities:
- Reserve: read the RESERVED numbers, pick the smallest missing one and insert
  it, all inside one SERIALIZABLE transaction. Conflicts abort one side; the
  whole read-compute-insert sequence is retried up to the configured budget.
- Release: free a number so the next reservation backfills the gap.
- Bind: attach a reservation to its trámite inside the caller's transaction.

No other code path inserts or updates reservation rows.
"""
import logging
import random
import time
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.exc import IntegrityError, OperationalError, TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session, sessionmaker

from tramites.config import Settings
from tramites.errors import AllocationFailed, NotFound
from tramites.models.agency import Agency
from tramites.models.reservation import ConsecutivoReservation, ReservationStatus

logger = logging.getLogger(__name__)

# Serialization failures, lock timeouts and unique-index collisions
RETRYABLE_ERRORS = (OperationalError, IntegrityError, PoolTimeoutError)


def find_smallest_missing(sorted_used: list[int]) -> int:
    """Return the smallest positive integer absent from an ascending list."""
    expected = 1
    for n in sorted_used:
        if n == expected:
            expected += 1
        elif n > expected:
            break
    return expected


class ConsecutivoAllocator:
    """Reserve/release consecutivos against the transactional store."""

    def __init__(self, session_factory: sessionmaker, settings: Settings):
        self._session_factory = session_factory
        self.max_attempts = max(1, settings.CONSECUTIVO_MAX_ATTEMPTS)
        self.jitter_ms = max(0, settings.CONSECUTIVO_RETRY_JITTER_MS)

    def reserve(self, agency_id: str, year: int) -> ConsecutivoReservation:
        """Reserve the smallest free consecutivo for (agency, year).

        Raises ``NotFound`` for an unknown agency and ``AllocationFailed`` once
        the retry budget is spent. A failed attempt leaves no rows behind.
        """
        for attempt in range(1, self.max_attempts + 1):
            try:
                reservation = self._reserve_once(agency_id, year)
            except RETRYABLE_ERRORS as exc:
                logger.warning(
                    "Consecutivo conflict for agency %s year %d (attempt %d/%d): %s",
                    agency_id, year, attempt, self.max_attempts, exc.__class__.__name__,
                )
                if attempt < self.max_attempts:
                    self._pause()
                continue
            logger.info(
                "Reserved consecutivo %d for agency %s year %d (reservation %s)",
                reservation.consecutivo, agency_id, year, reservation.reservation_id,
            )
            return reservation

        logger.error("Consecutivo allocation exhausted for agency %s year %d", agency_id, year)
        raise AllocationFailed(agency_id, year, self.max_attempts)

    def _reserve_once(self, agency_id: str, year: int) -> ConsecutivoReservation:
        with self._session_factory() as session:
            session.connection(execution_options={"isolation_level": "SERIALIZABLE"})

            if session.get(Agency, agency_id) is None:
                raise NotFound("Agency", agency_id)

            used = [
                row.consecutivo
                for row in session.query(ConsecutivoReservation.consecutivo)
                .filter(
                    ConsecutivoReservation.agency_id == agency_id,
                    ConsecutivoReservation.year == year,
                    ConsecutivoReservation.status == ReservationStatus.RESERVED,
                )
                .order_by(ConsecutivoReservation.consecutivo)
                .all()
            ]

            reservation = ConsecutivoReservation(
                agency_id=agency_id,
                year=year,
                consecutivo=find_smallest_missing(used),
                status=ReservationStatus.RESERVED,
            )
            session.add(reservation)
            session.commit()
            session.refresh(reservation)
            session.expunge(reservation)
            return reservation

    def _pause(self) -> None:
        if self.jitter_ms:
            time.sleep(random.uniform(0, self.jitter_ms) / 1000.0)

    def release(self, reservation_id: str, session: Optional[Session] = None) -> ConsecutivoReservation:
        """Mark a reservation RELEASED. Idempotent.

        With ``session`` the update joins the caller's transaction and is not
        committed here; without one it runs in its own transaction.
        """
        if session is not None:
            return self._release_in(session, reservation_id)

        with self._session_factory() as own_session:
            reservation = self._release_in(own_session, reservation_id)
            own_session.commit()
            own_session.refresh(reservation)
            own_session.expunge(reservation)
            return reservation

    def _release_in(self, session: Session, reservation_id: str) -> ConsecutivoReservation:
        reservation = session.get(ConsecutivoReservation, reservation_id)
        if reservation is None:
            raise NotFound("Reservation", reservation_id)
        if reservation.status == ReservationStatus.RELEASED:
            return reservation

        reservation.status = ReservationStatus.RELEASED
        reservation.released_at = datetime.now(timezone.utc)
        reservation.tramite_id = None
        session.flush()
        logger.info(
            "Released consecutivo %d for agency %s year %d",
            reservation.consecutivo, reservation.agency_id, reservation.year,
        )
        return reservation

    def release_for_tramite(self, session: Session, tramite_id: str) -> int:
        """Release every RESERVED row bound to a trámite, in the caller's transaction."""
        released = (
            session.query(ConsecutivoReservation)
            .filter(
                ConsecutivoReservation.tramite_id == tramite_id,
                ConsecutivoReservation.status == ReservationStatus.RESERVED,
            )
            .update(
                {
                    ConsecutivoReservation.status: ReservationStatus.RELEASED,
                    ConsecutivoReservation.released_at: datetime.now(timezone.utc),
                    ConsecutivoReservation.tramite_id: None,
                },
                synchronize_session=False,
            )
        )
        logger.info("Released %d reservation(s) of trámite %s", released, tramite_id)
        return released

    def bind(self, session: Session, reservation_id: str, tramite_id: str) -> None:
        """Attach a RESERVED row to its trámite, in the caller's transaction."""
        bound = (
            session.query(ConsecutivoReservation)
            .filter(
                ConsecutivoReservation.reservation_id == reservation_id,
                ConsecutivoReservation.status == ReservationStatus.RESERVED,
            )
            .update({ConsecutivoReservation.tramite_id: tramite_id}, synchronize_session=False)
        )
        if bound != 1:
            raise NotFound("Reservation", reservation_id)
