"""Tareas Celery para generación sintética e import de roster"""
from datetime import date
from typing import Awaitable, Callable, Dict, Optional
import logging

from redis.exceptions import RedisError

from shared.cache.celery_app import celery_app, run_async
from shared.cache.redis_client import DistributedLock, LockNotAcquired, get_redis, close_redis
from shared.database import connection
from shared.storage.blob_store import MinioBlobStore
from shared.storage.ticket_store import SqlTicketStore
from services.ticket_generation.models.generation import EventData
from services.ticket_generation.services.batch_generator import BatchResult, BatchTicketGenerator
from services.ticket_generation.services.image_sinks import BlobSink, GallerySink, ImageSink

logger = logging.getLogger(__name__)

LOCK_EXPIRE_SECONDS = 120
PROGRESS_EVERY = 10
CANCEL_FLAG_TTL = 24 * 3600


def cancel_key(task_id: str) -> str:
    return f"batch:cancel:{task_id}"


async def request_cancel(task_id: str):
    """Marcar un batch para cancelar; la tarea lo ve antes del próximo item"""
    redis_conn = await get_redis()
    await redis_conn.set(cancel_key(task_id), "1", ex=CANCEL_FLAG_TTL)
    logger.info(f"Cancelación solicitada para batch {task_id}")


class RedisCancelFlag:
    """Flag de cancelación compartido entre la API y el worker"""

    def __init__(self, task_id: str):
        self.key = cancel_key(task_id)

    async def is_set(self) -> bool:
        redis_conn = await get_redis()
        return bool(await redis_conn.exists(self.key))

    async def clear(self):
        try:
            redis_conn = await get_redis()
            await redis_conn.delete(self.key)
        except RedisError as e:
            logger.warning(f"No se pudo limpiar {self.key}: {e}")


def progress_meta(processed: int, total: int) -> Dict:
    return {
        "processed": processed,
        "total": total,
        "progress": round(processed / total, 4) if total else 0.0,
    }


def build_sink(generation_date: str, save_to_cloud: bool) -> ImageSink:
    if save_to_cloud:
        return BlobSink(generation_date, MinioBlobStore())
    return GallerySink(generation_date)


Runner = Callable[[BatchTicketGenerator, Callable, RedisCancelFlag], Awaitable[BatchResult]]


async def run_ticket_batch(task, operation: str, runner: Runner, save_to_cloud: bool,
                           generation_date: Optional[str] = None) -> Dict:
    """
    Ejecutar un batch de tickets dentro del lock de su operación

    Publica el progreso como estado PROGRESS de la tarea y renueva el lock
    mientras avanza. Siempre cierra DB y Redis: cada tarea corre en su
    propio event loop.
    """
    generation_date = generation_date or date.today().isoformat()
    cancel = RedisCancelFlag(task.request.id)

    await connection.init_db()
    try:
        lock = DistributedLock(f"batch:{operation}", timeout=5, expire=LOCK_EXPIRE_SECONDS)
        async with lock:
            async with connection.async_session_maker() as db:
                generator = BatchTicketGenerator(SqlTicketStore(db), build_sink(generation_date, save_to_cloud))

                async def on_progress(processed: int, total: int):
                    if processed % PROGRESS_EVERY == 0 or processed == total:
                        task.update_state(state="PROGRESS", meta=progress_meta(processed, total))
                        await lock.extend()

                result = await runner(generator, on_progress, cancel)

        logger.info(f"[CELERY] Batch {operation} terminó: {result.status.value} ({result.processed}/{result.total})")
        return result.to_dict()

    except LockNotAcquired:
        logger.warning(f"[CELERY] Ya hay un batch '{operation}' en curso")
        return {
            "status": "rejected",
            "kind": None,
            "processed": 0,
            "total": 0,
            "message": f"Ya hay un batch de {operation} en curso",
        }
    finally:
        await cancel.clear()
        await connection.close_db()
        await close_redis()


@celery_app.task(name="generate_ticket_batch", bind=True)
def generate_ticket_batch_task(self, event: Dict, save_to_cloud: bool = False,
                               generation_date: Optional[str] = None):
    """Generar `quantity` tickets para un evento"""
    event_data = EventData(**event)
    logger.info(f"[CELERY] Generando {event_data.quantity} tickets para {event_data.name}")

    def runner(generator, on_progress, cancel):
        return generator.generate(event_data, on_progress=on_progress, cancel=cancel)

    return run_async(run_ticket_batch(self, "generation", runner, save_to_cloud, generation_date))


@celery_app.task(name="import_ticket_roster", bind=True)
def import_ticket_roster_task(self, roster_text: str, save_to_cloud: bool = False,
                              generation_date: Optional[str] = None):
    """Importar un roster CSV (un ticket por línea válida)"""
    logger.info(f"[CELERY] Importando roster ({len(roster_text)} caracteres)")

    def runner(generator, on_progress, cancel):
        return generator.import_roster(roster_text, on_progress=on_progress, cancel=cancel)

    return run_async(run_ticket_batch(self, "import", runner, save_to_cloud, generation_date))
