"""Modelos Pydantic para generación e import de tickets"""
from pydantic import BaseModel, Field
from typing import Optional


class EventData(BaseModel):
    """Datos del evento a generar (modo sintético)"""
    name: str = Field(..., min_length=1)
    date: str = Field(..., min_length=1, description="YYYY-MM-DD")
    start: str = Field(..., min_length=1)
    end: str = Field(..., min_length=1)
    place: str = Field(..., min_length=1)
    quantity: int = Field(..., gt=0)


class GenerationRequest(BaseModel):
    event: EventData
    save_to_cloud: bool = False


class TaskAccepted(BaseModel):
    task_id: str
    status: str = "queued"


class TaskProgress(BaseModel):
    task_id: str
    state: str
    processed: int = 0
    total: int = 0
    progress: float = 0.0
    status: Optional[str] = None
    kind: Optional[str] = None
    message: Optional[str] = None
