"""
Configuración de Celery para los batches de generación, import y export

Los batches corren de a uno por tipo de operación (ver DistributedLock),
así que un worker con poca concurrencia alcanza.
"""
from celery import Celery
from kombu import Queue, Exchange
import asyncio
import os
import logging

logger = logging.getLogger(__name__)

# Configuración de Redis
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
REDIS_MAX_CONNECTIONS = int(os.getenv("CELERY_REDIS_MAX_CONNECTIONS", "20"))

# Crear aplicación Celery
celery_app = Celery(
    "qrm",
    broker=REDIS_URL,
    backend=REDIS_URL,
    include=[
        "services.ticket_generation.tasks.generation_tasks",
        "pdfsvc.app.tasks",
    ]
)

default_exchange = Exchange("default", type="direct")

celery_app.conf.task_queues = (
    Queue("default", default_exchange, routing_key="default"),
    # Cola de baja prioridad para operaciones batch
    Queue("low_priority", default_exchange, routing_key="low"),
)

celery_app.conf.task_routes = {
    "generate_ticket_batch": {"queue": "low_priority"},
    "import_ticket_roster": {"queue": "low_priority"},
    "export_qr_sheet": {"queue": "low_priority"},
}

celery_app.conf.update(
    # Serialización
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",

    # Timezone
    timezone="UTC",
    enable_utc=True,

    # Tracking (el estado PROGRESS lo publican las tareas)
    task_track_started=True,

    # Un batch de miles de tickets puede tardar
    task_time_limit=60 * 60,
    task_soft_time_limit=55 * 60,

    # Solo 1 tarea por worker a la vez
    worker_prefetch_multiplier=1,

    broker_pool_limit=REDIS_MAX_CONNECTIONS,
    redis_max_connections=REDIS_MAX_CONNECTIONS,

    broker_connection_retry_on_startup=True,
    broker_connection_max_retries=10,

    broker_heartbeat=30,

    # Un batch a medias no se reintenta solo: los tickets ya creados quedan
    task_acks_late=False,

    result_expires=24 * 3600,
    result_extended=True,

    worker_concurrency=2,

    # Reiniciar worker después de N tareas (previene memory leaks)
    worker_max_tasks_per_child=50,
    worker_max_memory_per_child=512000,  # 512MB

    task_default_queue="default",
    task_default_exchange="default",
    task_default_routing_key="default",

    result_compression="gzip",
)

logger.info(
    "Celery configurado - Broker: %s, Pool limit: %d, Concurrency: %d",
    REDIS_URL.split("@")[-1] if "@" in REDIS_URL else REDIS_URL,
    REDIS_MAX_CONNECTIONS,
    celery_app.conf.worker_concurrency
)


def run_async(coro):
    """Helper para ejecutar coroutines en contexto síncrono de Celery"""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()
