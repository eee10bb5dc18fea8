"""Rutas de validación de tickets"""
from fastapi import APIRouter, Depends, HTTPException, status, Query, Request
from typing import Optional
import logging

from redis.exceptions import RedisError

from app.core.config import settings
from shared.cache.redis_client import cache_get, cache_set
from shared.storage.dependencies import get_ticket_store
from shared.storage.ticket_store import TicketStore
from shared.utils.exceptions import StoreUnavailableError
from shared.utils.rate_limiter import limiter, RATE_LIMITS
from services.event_stats.services.stats_service import StatsService
from services.ticket_validation.models.ticket import (
    TicketValidationRequest,
    TicketValidationResponse,
    TicketResponse,
    EventStatsResponse,
)
from services.ticket_validation.services.control_state import ControlState, apply_validation, format_ts
from services.ticket_validation.services.ticket_service import TicketValidationService, ValidationKind


logger = logging.getLogger(__name__)

router = APIRouter()


def _state_key(inspector_id: str) -> str:
    return f"control:state:{inspector_id}"


async def _load_state(inspector_id: str) -> ControlState:
    try:
        return ControlState.from_dict(await cache_get(_state_key(inspector_id)))
    except RedisError as e:
        logger.warning(f"No se pudo leer el estado de control de {inspector_id}: {e}")
        return ControlState()


async def _save_state(inspector_id: str, state: ControlState):
    try:
        await cache_set(_state_key(inspector_id), state.to_dict(), expire=settings.CONTROL_STATE_TTL)
    except RedisError as e:
        logger.warning(f"No se pudo guardar el estado de control de {inspector_id}: {e}")


def _stats_response(state: ControlState) -> Optional[EventStatsResponse]:
    if state.stats is None:
        return None
    return EventStatsResponse(**state.stats.to_dict())


@router.post("/validate", response_model=TicketValidationResponse)
@limiter.limit(RATE_LIMITS["validation"])
async def validate_ticket(
    request: Request,  # Necesario para rate limiter
    validation_request: TicketValidationRequest,
    store: TicketStore = Depends(get_ticket_store)
):
    """
    Validar ticket mediante el payload del QR

    Devuelve el resultado (primera validación, duplicado, desconocido...)
    junto con las estadísticas del evento que ve el inspector.
    """
    service = TicketValidationService(store)
    result = await service.validate(validation_request.payload)

    state = await _load_state(validation_request.inspector_id)
    state = await apply_validation(state, result, StatsService(store))
    await _save_state(validation_request.inspector_id, state)

    return TicketValidationResponse(
        kind=result.kind.value,
        valid=result.kind == ValidationKind.FIRST_VALID,
        message=result.message,
        reference=result.reference,
        count=result.new_count,
        first_validated_at=state.first_validated_at,
        event_name=result.event_name,
        event_date=result.event_date,
        feedback=result.feedback.value,
        beeps=result.beeps,
        stats=_stats_response(state),
    )


@router.put("/control/{inspector_id}/scope", response_model=EventStatsResponse)
async def switch_control_scope(
    inspector_id: str,
    name: str = Query(..., description="Nombre del evento"),
    date: Optional[str] = Query(None, description="Fecha del evento (YYYY-MM-DD)"),
    store: TicketStore = Depends(get_ticket_store)
):
    """Cambiar el evento mostrado por el inspector (recalcula estadísticas)"""
    stats_service = StatsService(store)
    try:
        stats = await stats_service.refresh(name, date)
    except StoreUnavailableError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.message)

    state = await _load_state(inspector_id)
    state = ControlState(
        message=state.message,
        kind=state.kind,
        reference=state.reference,
        count=state.count,
        first_validated_at=state.first_validated_at,
        stats=stats,
    )
    await _save_state(inspector_id, state)
    return EventStatsResponse(**stats.to_dict())


@router.get("/{ticket_id}", response_model=TicketResponse)
async def get_ticket(
    ticket_id: str,
    store: TicketStore = Depends(get_ticket_store)
):
    """Obtener información de un ticket por ID (sin token ni payload)"""
    service = TicketValidationService(store)
    try:
        ticket = await service.get_ticket_by_id(ticket_id)
    except StoreUnavailableError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.message)

    if not ticket:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Ticket no encontrado"
        )

    return TicketResponse(
        id=ticket.id,
        reference=ticket.reference,
        event_name=ticket.event_name,
        event_date=ticket.event_date,
        start_time=ticket.start_time,
        end_time=ticket.end_time,
        place=ticket.place,
        sequence_number=ticket.sequence_number,
        control_count=ticket.control_count,
        status=ticket.status,
        first_validated_at=format_ts(ticket.first_validated_at or ticket.first_validated_at_client),
        created_at=ticket.created_at.isoformat() if ticket.created_at else None,
    )
