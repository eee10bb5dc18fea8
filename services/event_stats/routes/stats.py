"""Rutas de estadísticas de control por evento"""
from fastapi import APIRouter, Depends, HTTPException, status, Query
from typing import Optional

from shared.storage.dependencies import get_ticket_store
from shared.storage.ticket_store import TicketStore
from shared.utils.exceptions import StoreUnavailableError
from services.event_stats.models.stats import EventStatsResponse, EventTicketItem, EventTicketsResponse
from services.event_stats.services.stats_service import StatsService


router = APIRouter()


@router.get("/stats", response_model=EventStatsResponse)
async def get_event_stats(
    name: str = Query(..., description="Nombre del evento"),
    date: Optional[str] = Query(None, description="Fecha del evento (YYYY-MM-DD)"),
    store: TicketStore = Depends(get_ticket_store)
):
    """Total, controlados y restantes de un evento"""
    try:
        stats = await StatsService(store).refresh(name, date)
    except StoreUnavailableError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.message)
    return EventStatsResponse(**stats.to_dict())


@router.get("/tickets", response_model=EventTicketsResponse)
async def get_event_tickets(
    name: str = Query(..., description="Nombre del evento"),
    date: Optional[str] = Query(None, description="Fecha del evento (YYYY-MM-DD)"),
    store: TicketStore = Depends(get_ticket_store)
):
    """Tickets de un evento ordenados por número de secuencia"""
    try:
        stats = await StatsService(store).refresh(name, date)
        tickets = await store.find_by_scope(name, date or None)
    except StoreUnavailableError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.message)

    return EventTicketsResponse(
        stats=EventStatsResponse(**stats.to_dict()),
        tickets=[
            EventTicketItem(
                id=t.id,
                reference=t.reference,
                sequence_number=t.sequence_number,
                control_count=t.control_count,
                status=t.status,
            )
            for t in tickets
        ],
    )
