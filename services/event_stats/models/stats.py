"""Modelos Pydantic para estadísticas de eventos"""
from pydantic import BaseModel
from typing import List, Optional


class EventStatsResponse(BaseModel):
    event_name: str
    event_date: Optional[str] = None
    total: int
    scanned: int
    remaining: int


class EventTicketItem(BaseModel):
    id: str
    reference: str
    sequence_number: int
    control_count: int
    status: str


class EventTicketsResponse(BaseModel):
    stats: EventStatsResponse
    tickets: List[EventTicketItem]
