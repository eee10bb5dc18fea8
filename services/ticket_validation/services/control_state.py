"""Estado de la pantalla de control por inspector (patrón reducer)"""
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Dict, Optional
import logging

from services.event_stats.services.stats_service import EventStats, StatsService
from services.ticket_validation.services.ticket_service import ValidationKind, ValidationResult
from shared.utils.exceptions import StoreUnavailableError

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


def format_ts(ts: Optional[datetime]) -> Optional[str]:
    if ts is None:
        return None
    return ts.strftime(TIMESTAMP_FORMAT)


@dataclass(frozen=True)
class ControlState:
    """Último resultado mostrado + estadísticas del scope actual"""
    message: Optional[str] = None
    kind: Optional[str] = None
    reference: Optional[str] = None
    count: Optional[int] = None
    first_validated_at: Optional[str] = None
    stats: Optional[EventStats] = field(default=None, compare=False)

    def to_dict(self) -> Dict:
        return {
            "message": self.message,
            "kind": self.kind,
            "reference": self.reference,
            "count": self.count,
            "first_validated_at": self.first_validated_at,
            "stats": self.stats.to_dict() if self.stats else None,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict]) -> "ControlState":
        if not data:
            return cls()
        stats = data.get("stats")
        return cls(
            message=data.get("message"),
            kind=data.get("kind"),
            reference=data.get("reference"),
            count=data.get("count"),
            first_validated_at=data.get("first_validated_at"),
            stats=EventStats.from_dict(stats) if stats else None,
        )


async def apply_validation(state: ControlState, result: ValidationResult, stats_service: StatsService) -> ControlState:
    """
    Producir el nuevo estado a partir de un resultado de validación

    Las estadísticas solo cambian cuando se encontró el ticket: se suma 1 en
    memoria si es una primera validación del scope actual, o se recalcula el
    scope del ticket si es otro evento. Un fallo al recalcular no invalida
    el resultado de la validación.
    """
    if result.kind in (ValidationKind.MALFORMED_SCAN, ValidationKind.UNKNOWN_TICKET):
        return replace(
            state,
            message=result.message,
            kind=result.kind.value,
            reference=None,
            count=None,
            first_validated_at=None,
        )

    if result.kind == ValidationKind.STORE_UNAVAILABLE:
        return replace(state, message=result.message, kind=result.kind.value, first_validated_at=None)

    # Copia: el estado previo no se modifica
    stats = replace(state.stats) if state.stats else None
    stats_service.current = stats
    if stats is not None and stats.matches(result.event_name, result.event_date):
        if result.is_first_valid:
            stats_service.bump_scanned(result.event_name, result.event_date)
    elif result.event_name:
        try:
            stats = await stats_service.refresh(result.event_name, result.event_date)
        except StoreUnavailableError as e:
            logger.warning(f"No se pudieron actualizar las estadísticas de '{result.event_name}': {e}")

    return ControlState(
        message=result.message,
        kind=result.kind.value,
        reference=result.reference,
        count=result.new_count,
        first_validated_at=format_ts(result.first_validated_at),
        stats=stats,
    )
