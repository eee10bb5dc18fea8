"""Servicio de validación de tickets"""
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional
import logging

from shared.storage.ticket_store import TicketStore, TicketRecord
from shared.utils.exceptions import StoreUnavailableError, ErrorKind
from shared.utils.qr_generator import is_ticket_payload

logger = logging.getLogger(__name__)


class ValidationKind(str, Enum):
    MALFORMED_SCAN = ErrorKind.MALFORMED_SCAN.value
    UNKNOWN_TICKET = ErrorKind.UNKNOWN_TICKET.value
    FIRST_VALID = "first_valid"
    DUPLICATE = "duplicate"
    STORE_UNAVAILABLE = ErrorKind.STORE_UNAVAILABLE.value


class Feedback(str, Enum):
    """Patrón sonoro sugerido al cliente del escáner"""
    SUCCESS = "success"
    DUPLICATE = "duplicate"
    INVALID = "invalid"


@dataclass
class ValidationResult:
    kind: ValidationKind
    message: str
    reference: Optional[str] = None
    new_count: Optional[int] = None
    existing: Optional[int] = None
    first_validated_at: Optional[datetime] = None
    event_name: Optional[str] = None
    event_date: Optional[str] = None
    ticket_id: Optional[str] = None

    @property
    def is_first_valid(self) -> bool:
        return self.kind == ValidationKind.FIRST_VALID

    @property
    def feedback(self) -> Feedback:
        if self.kind == ValidationKind.FIRST_VALID:
            return Feedback.SUCCESS
        if self.kind == ValidationKind.DUPLICATE:
            return Feedback.DUPLICATE
        return Feedback.INVALID

    @property
    def beeps(self) -> int:
        """Pitidos del patrón: válido 1, duplicado 2 (sin importar cuántas veces), inválido 3"""
        if self.kind == ValidationKind.FIRST_VALID:
            return 1
        if self.kind == ValidationKind.DUPLICATE:
            return 2
        return 3


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(ts: Optional[datetime]) -> Optional[datetime]:
    """Fechas naive del driver (sqlite) se interpretan como UTC"""
    if ts is None:
        return None
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def resolve_first_validated_at(record: TicketRecord) -> Optional[datetime]:
    """Hora del servidor si existe, si no la del cliente (en UTC)"""
    if record.first_validated_at is not None:
        return as_utc(record.first_validated_at)
    return as_utc(record.first_validated_at_client)


class TicketValidationService:
    """Servicio para validar tickets mediante el payload del QR"""

    def __init__(self, store: TicketStore, clock: Callable[[], datetime] = _utcnow):
        self.store = store
        self.clock = clock

    async def validate(self, raw_payload: str) -> ValidationResult:
        """
        Validar un payload escaneado

        Returns:
            ValidationResult con kind, reference, new_count y la hora de
            primera validación. Un payload ajeno no llega al store.
        """
        payload = (raw_payload or "").strip()

        if not is_ticket_payload(payload):
            return ValidationResult(
                kind=ValidationKind.MALFORMED_SCAN,
                message="No se pudo leer este QR"
            )

        now = self.clock()
        try:
            outcome = await self.store.register_control(payload, now)
        except StoreUnavailableError as e:
            logger.error(f"Error validando ticket: {e.message}")
            return ValidationResult(
                kind=ValidationKind.STORE_UNAVAILABLE,
                message=f"Error: {e.message}"
            )

        if outcome is None:
            return ValidationResult(
                kind=ValidationKind.UNKNOWN_TICKET,
                message="Inválido / Ticket desconocido"
            )

        record = outcome.record
        result = ValidationResult(
            kind=ValidationKind.FIRST_VALID,
            message="Válido",
            reference=record.reference,
            new_count=record.control_count,
            existing=outcome.previous_count,
            event_name=record.event_name,
            event_date=record.event_date,
            ticket_id=record.id,
        )

        # Hora guardada en el store, la misma en todos los scans del ticket
        result.first_validated_at = resolve_first_validated_at(record)
        if outcome.is_first:
            logger.info(f"Ticket {record.reference} validado por primera vez")
        else:
            result.kind = ValidationKind.DUPLICATE
            result.message = f"Ya controlado ({outcome.previous_count} veces)"
            logger.info(f"Ticket {record.reference} ya controlado ({outcome.previous_count} veces)")

        return result

    async def get_ticket_by_id(self, ticket_id: str) -> Optional[TicketRecord]:
        """Obtener ticket por ID"""
        return await self.store.get(ticket_id)
