"""Contrato del store de tickets y adaptador SQLAlchemy"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Tuple
import logging
import uuid

from sqlalchemy import select, update, func, case
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from shared.database.models import Ticket
from shared.utils.exceptions import StoreUnavailableError

logger = logging.getLogger(__name__)


@dataclass
class TicketRecord:
    """Ticket persistido (o por persistir si id es None)"""
    payload: str
    token: str
    reference: str
    event_name: str
    event_date: Optional[str]
    start_time: Optional[str]
    end_time: Optional[str]
    place: Optional[str]
    sequence_number: int
    control_count: int = 0
    status: str = "valid"
    first_validated_at: Optional[datetime] = None
    first_validated_at_client: Optional[datetime] = None
    created_at: Optional[datetime] = None
    id: Optional[str] = None

    @property
    def scope(self) -> Tuple[str, Optional[str]]:
        return (self.event_name, self.event_date)


@dataclass
class ControlOutcome:
    """Resultado del incremento atómico de control_count"""
    record: TicketRecord
    previous_count: int

    @property
    def is_first(self) -> bool:
        return self.previous_count == 0


@dataclass
class ScopeCounts:
    total: int = 0
    scanned: int = 0


class TicketStore(ABC):
    """
    Colección de tickets indexada por payload.

    Las implementaciones lanzan StoreUnavailableError cuando la comunicación
    con el store falla; en ese caso nada se considera confirmado.
    """

    @abstractmethod
    async def add(self, ticket: TicketRecord) -> str:
        """Persistir un ticket nuevo y devolver su id"""

    @abstractmethod
    async def get(self, ticket_id: str) -> Optional[TicketRecord]:
        """Obtener ticket por id"""

    @abstractmethod
    async def register_control(self, payload: str, client_time: datetime) -> Optional[ControlOutcome]:
        """
        Incrementar control_count en 1 y marcar status OK de forma atómica.

        Si el contador previo era 0, fija first_validated_at (hora del
        servidor) y first_validated_at_client; nunca los sobrescribe después.
        Devuelve None si ningún ticket tiene ese payload.
        """

    @abstractmethod
    async def scope_counts(self, event_name: str, event_date: Optional[str] = None) -> ScopeCounts:
        """Total de tickets del scope y cuántos tienen control_count > 0"""

    @abstractmethod
    async def find_by_scope(self, event_name: str, event_date: Optional[str] = None) -> List[TicketRecord]:
        """Tickets de un evento (nombre + fecha opcional)"""


def _to_record(ticket: Ticket) -> TicketRecord:
    return TicketRecord(
        id=str(ticket.id),
        payload=ticket.payload,
        token=ticket.token,
        reference=ticket.reference,
        event_name=ticket.event_name,
        event_date=ticket.event_date,
        start_time=ticket.start_time,
        end_time=ticket.end_time,
        place=ticket.place,
        sequence_number=ticket.sequence_number,
        control_count=ticket.control_count or 0,
        status=ticket.status,
        first_validated_at=ticket.first_validated_at,
        first_validated_at_client=ticket.first_validated_at_client,
        created_at=ticket.created_at,
    )


class SqlTicketStore(TicketStore):
    """TicketStore sobre SQLAlchemy async (PostgreSQL en producción)"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def add(self, ticket: TicketRecord) -> str:
        row = Ticket(
            id=uuid.uuid4(),
            payload=ticket.payload,
            token=ticket.token,
            reference=ticket.reference,
            event_name=ticket.event_name,
            event_date=ticket.event_date,
            start_time=ticket.start_time,
            end_time=ticket.end_time,
            place=ticket.place,
            sequence_number=ticket.sequence_number,
            control_count=0,
            status="valid",
        )
        try:
            self.db.add(row)
            await self.db.commit()
        except (SQLAlchemyError, OSError) as e:
            await self.db.rollback()
            logger.error(f"Error guardando ticket {ticket.reference}: {e}")
            raise StoreUnavailableError(f"No se pudo guardar el ticket: {e}")

        ticket.id = str(row.id)
        return ticket.id

    async def get(self, ticket_id: str) -> Optional[TicketRecord]:
        try:
            ticket_uuid = uuid.UUID(ticket_id)
        except ValueError:
            return None

        try:
            result = await self.db.execute(select(Ticket).where(Ticket.id == ticket_uuid))
        except (SQLAlchemyError, OSError) as e:
            raise StoreUnavailableError(f"Error consultando ticket: {e}")

        ticket = result.scalar_one_or_none()
        return _to_record(ticket) if ticket else None

    async def register_control(self, payload: str, client_time: datetime) -> Optional[ControlOutcome]:
        # En el SET todas las columnas referencian el valor previo de la fila,
        # así el CASE decide sobre el contador antes del incremento.
        first_time = Ticket.control_count == 0
        stmt = (
            update(Ticket)
            .where(Ticket.payload == payload)
            .values(
                control_count=Ticket.control_count + 1,
                status="OK",
                first_validated_at=case(
                    (first_time, func.now()),
                    else_=Ticket.first_validated_at
                ),
                first_validated_at_client=case(
                    (first_time, client_time),
                    else_=Ticket.first_validated_at_client
                ),
            )
            .returning(
                Ticket.id,
                Ticket.payload,
                Ticket.token,
                Ticket.reference,
                Ticket.event_name,
                Ticket.event_date,
                Ticket.start_time,
                Ticket.end_time,
                Ticket.place,
                Ticket.sequence_number,
                Ticket.control_count,
                Ticket.status,
                Ticket.first_validated_at,
                Ticket.first_validated_at_client,
                Ticket.created_at,
            )
            .execution_options(synchronize_session=False)
        )

        try:
            result = await self.db.execute(stmt)
            row = result.one_or_none()
            await self.db.commit()
        except (SQLAlchemyError, OSError) as e:
            await self.db.rollback()
            logger.error(f"Error registrando control: {e}")
            raise StoreUnavailableError(f"No se pudo registrar el control: {e}")

        if row is None:
            return None

        record = TicketRecord(
            id=str(row.id),
            payload=row.payload,
            token=row.token,
            reference=row.reference,
            event_name=row.event_name,
            event_date=row.event_date,
            start_time=row.start_time,
            end_time=row.end_time,
            place=row.place,
            sequence_number=row.sequence_number,
            control_count=row.control_count,
            status=row.status,
            first_validated_at=row.first_validated_at,
            first_validated_at_client=row.first_validated_at_client,
            created_at=row.created_at,
        )
        return ControlOutcome(record=record, previous_count=row.control_count - 1)

    def _scope_filter(self, stmt, event_name: str, event_date: Optional[str]):
        stmt = stmt.where(Ticket.event_name == event_name)
        if event_date:
            stmt = stmt.where(Ticket.event_date == event_date)
        return stmt

    async def scope_counts(self, event_name: str, event_date: Optional[str] = None) -> ScopeCounts:
        stmt = select(
            func.count(Ticket.id),
            func.coalesce(func.sum(case((Ticket.control_count > 0, 1), else_=0)), 0),
        )
        stmt = self._scope_filter(stmt, event_name, event_date)

        try:
            result = await self.db.execute(stmt)
        except (SQLAlchemyError, OSError) as e:
            raise StoreUnavailableError(f"Error calculando estadísticas: {e}")

        total, scanned = result.one()
        return ScopeCounts(total=int(total or 0), scanned=int(scanned or 0))

    async def find_by_scope(self, event_name: str, event_date: Optional[str] = None) -> List[TicketRecord]:
        stmt = self._scope_filter(select(Ticket), event_name, event_date)
        stmt = stmt.order_by(Ticket.sequence_number.asc(), Ticket.reference.asc())

        try:
            result = await self.db.execute(stmt)
        except (SQLAlchemyError, OSError) as e:
            raise StoreUnavailableError(f"Error consultando tickets: {e}")

        return [_to_record(t) for t in result.scalars().all()]
