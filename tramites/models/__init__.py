"""ORM models. Importing this package registers every table on Base.metadata."""
from tramites.models.agency import Agency  # noqa: F401
from tramites.models.reservation import ConsecutivoReservation, ReservationStatus  # noqa: F401
from tramites.models.tramite import Tramite, TramiteState  # noqa: F401
from tramites.models.history import TramiteHistory, ActionType  # noqa: F401
from tramites.models.alert_rule import AlertRule  # noqa: F401
from tramites.models.document import (  # noqa: F401
    ChecklistStatus,
    DocumentType,
    TramiteDocument,
    TramiteFile,
)
