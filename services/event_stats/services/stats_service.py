"""Servicio para cálculo de estadísticas de control por evento"""
from dataclasses import dataclass, asdict
from typing import Optional, Dict
import logging

from shared.storage.ticket_store import TicketStore

logger = logging.getLogger(__name__)


@dataclass
class EventStats:
    """Contadores de un scope (nombre + fecha opcional del evento)"""
    event_name: str
    event_date: Optional[str] = None
    total: int = 0
    scanned: int = 0

    @property
    def remaining(self) -> int:
        return max(self.total - self.scanned, 0)

    def matches(self, event_name: Optional[str], event_date: Optional[str]) -> bool:
        """Un scope sin fecha acepta tickets de cualquier fecha con el mismo nombre"""
        if event_name is None or self.event_name != event_name:
            return False
        return not self.event_date or self.event_date == event_date

    def to_dict(self) -> Dict:
        data = asdict(self)
        data["remaining"] = self.remaining
        return data

    @classmethod
    def from_dict(cls, data: Dict) -> "EventStats":
        return cls(
            event_name=data["event_name"],
            event_date=data.get("event_date"),
            total=int(data.get("total", 0)),
            scanned=int(data.get("scanned", 0)),
        )


class StatsService:
    """
    Mantiene los contadores del scope mostrado actualmente

    refresh() recalcula desde el store; bump_scanned() es el camino barato
    cuando una primera validación pertenece al mismo scope.
    """

    def __init__(self, store: TicketStore, current: Optional[EventStats] = None):
        self.store = store
        self.current = current

    async def refresh(self, event_name: str, event_date: Optional[str] = None) -> EventStats:
        """
        Recalcular total/scanned consultando todos los tickets del scope

        Args:
            event_name: Nombre del evento
            event_date: Fecha del evento (opcional)

        Returns:
            EventStats del scope, que pasa a ser el scope actual
        """
        event_date = event_date or None
        counts = await self.store.scope_counts(event_name, event_date)
        self.current = EventStats(
            event_name=event_name,
            event_date=event_date,
            total=counts.total,
            scanned=counts.scanned,
        )
        logger.info(
            f"Estadísticas de '{event_name}' ({event_date or 'todas las fechas'}): "
            f"total={counts.total}, scanned={counts.scanned}"
        )
        return self.current

    def bump_scanned(self, event_name: Optional[str], event_date: Optional[str]) -> bool:
        """
        Sumar 1 a scanned si el ticket pertenece al scope actual

        Returns:
            False si el scope no coincide: el llamador debe hacer refresh()
            con el scope del ticket.
        """
        if self.current is None or not self.current.matches(event_name, event_date):
            return False
        self.current.scanned += 1
        return True
