"""Tarea Celery de export PDF (una a la vez)"""
from typing import Dict
import logging

from shared.cache.celery_app import celery_app, run_async
from shared.cache.redis_client import DistributedLock, LockNotAcquired, close_redis
from shared.storage.blob_store import MinioBlobStore
from shared.utils.exceptions import TicketingError
from pdfsvc.app.catalog import QrCatalog
from pdfsvc.app.export import build_folder_pdf, save_export
from pdfsvc.app.models import ExportRequest

logger = logging.getLogger(__name__)

LOCK_EXPIRE_SECONDS = 300


async def run_export(task, request: ExportRequest) -> Dict:
    try:
        async with DistributedLock("batch:export", timeout=5, expire=LOCK_EXPIRE_SECONDS):
            def on_progress(processed: int, total: int):
                task.update_state(
                    state="PROGRESS",
                    meta={
                        "processed": processed,
                        "total": total,
                        "progress": round(processed / total, 4) if total else 0.0,
                    },
                )

            filename, pdf_bytes, pages = await build_folder_pdf(
                QrCatalog(MinioBlobStore()),
                request.folder,
                request.sheet_config(),
                on_progress,
            )
            path = await save_export(filename, pdf_bytes)

        logger.info(f"[CELERY] Export de {request.folder} listo: {path} ({pages} páginas)")
        return {"status": "completed", "kind": None, "filename": filename, "path": path, "pages": pages,
                "message": f"PDF exportado: {filename}"}

    except LockNotAcquired:
        logger.warning("[CELERY] Ya hay un export en curso")
        return {"status": "rejected", "kind": None, "message": "Ya hay un export en curso"}
    except TicketingError as e:
        logger.error(f"[CELERY] Export de {request.folder} falló: {e.message}")
        return {"status": "failed", **e.to_dict()}
    finally:
        await close_redis()


@celery_app.task(name="export_qr_sheet", bind=True)
def export_qr_sheet_task(self, request: Dict):
    """Exportar una carpeta de QR a PDF en EXPORT_DIR"""
    export_request = ExportRequest(**request)
    logger.info(f"[CELERY] Export PDF de {export_request.folder}")
    return run_async(run_export(self, export_request))
