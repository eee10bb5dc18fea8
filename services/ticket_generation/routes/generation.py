"""Rutas para lanzar y seguir batches de generación e import"""
from fastapi import APIRouter, File, Form, HTTPException, Request, UploadFile, status
from celery.result import AsyncResult
import logging

from redis.exceptions import RedisError

from shared.cache.celery_app import celery_app
from shared.utils.rate_limiter import limiter, RATE_LIMITS
from services.ticket_generation.models.generation import GenerationRequest, TaskAccepted, TaskProgress
from services.ticket_generation.tasks.generation_tasks import (
    generate_ticket_batch_task,
    import_ticket_roster_task,
    request_cancel,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def task_progress(task_id: str, result: AsyncResult) -> TaskProgress:
    """Traducir el estado Celery de un batch a TaskProgress"""
    state = result.state
    info = result.info

    if state == "PROGRESS" and isinstance(info, dict):
        return TaskProgress(
            task_id=task_id,
            state=state,
            processed=info.get("processed", 0),
            total=info.get("total", 0),
            progress=info.get("progress", 0.0),
        )

    if state == "SUCCESS" and isinstance(info, dict):
        total = info.get("total", 0)
        processed = info.get("processed", 0)
        return TaskProgress(
            task_id=task_id,
            state=state,
            processed=processed,
            total=total,
            progress=round(processed / total, 4) if total else 0.0,
            status=info.get("status"),
            kind=info.get("kind"),
            message=info.get("message"),
        )

    if state == "FAILURE":
        return TaskProgress(task_id=task_id, state=state, status="failed", message=str(info))

    return TaskProgress(task_id=task_id, state=state)


@router.post("/tickets", response_model=TaskAccepted, status_code=status.HTTP_202_ACCEPTED)
@limiter.limit(RATE_LIMITS["batch"])
async def generate_tickets(request: Request, generation_request: GenerationRequest):
    """Encolar la generación de `quantity` tickets para un evento"""
    task = generate_ticket_batch_task.delay(
        event=generation_request.event.model_dump(),
        save_to_cloud=generation_request.save_to_cloud,
    )
    logger.info(f"Batch de generación encolado: {task.id} ({generation_request.event.quantity} tickets)")
    return TaskAccepted(task_id=task.id)


@router.post("/roster", response_model=TaskAccepted, status_code=status.HTTP_202_ACCEPTED)
@limiter.limit(RATE_LIMITS["batch"])
async def import_roster(
    request: Request,
    file: UploadFile = File(..., description="CSV ';' con ref;nombre;fecha;inicio;fin;lugar"),
    save_to_cloud: bool = Form(False),
):
    """Encolar el import de un roster CSV"""
    content = await file.read()
    try:
        roster_text = content.decode("utf-8")
    except UnicodeDecodeError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="El roster debe estar codificado en UTF-8"
        )

    task = import_ticket_roster_task.delay(roster_text=roster_text, save_to_cloud=save_to_cloud)
    logger.info(f"Import de roster encolado: {task.id} ({file.filename})")
    return TaskAccepted(task_id=task.id)


@router.get("/{task_id}", response_model=TaskProgress)
async def get_generation_status(task_id: str):
    """Progreso o resultado de un batch"""
    return task_progress(task_id, AsyncResult(task_id, app=celery_app))


@router.post("/{task_id}/cancel", response_model=TaskAccepted, status_code=status.HTTP_202_ACCEPTED)
async def cancel_generation(task_id: str):
    """Pedir la cancelación de un batch; se detiene antes del próximo ticket"""
    try:
        await request_cancel(task_id)
    except RedisError as e:
        logger.error(f"No se pudo solicitar la cancelación de {task_id}: {e}")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Redis no disponible")
    return TaskAccepted(task_id=task_id, status="cancelling")
