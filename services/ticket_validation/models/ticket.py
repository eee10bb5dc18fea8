"""Modelos Pydantic para validación de tickets"""
from pydantic import BaseModel
from typing import Optional

from services.event_stats.models.stats import EventStatsResponse


class TicketValidationRequest(BaseModel):
    payload: str
    inspector_id: str


class TicketValidationResponse(BaseModel):
    kind: str
    valid: bool
    message: str
    reference: Optional[str] = None
    count: Optional[int] = None
    first_validated_at: Optional[str] = None
    event_name: Optional[str] = None
    event_date: Optional[str] = None
    feedback: str
    beeps: int
    stats: Optional[EventStatsResponse] = None


class TicketResponse(BaseModel):
    id: str
    reference: str
    event_name: str
    event_date: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    place: Optional[str] = None
    sequence_number: int
    control_count: int
    status: str
    first_validated_at: Optional[str] = None
    created_at: Optional[str] = None
