from fastapi import FastAPI, HTTPException, Depends
from fastapi.responses import StreamingResponse
from celery.result import AsyncResult
from io import BytesIO
import logging
import os

from shared.cache.celery_app import celery_app
from shared.storage.blob_store import BlobStore
from shared.storage.dependencies import get_blob_store
from shared.utils.exceptions import NothingExportedError, OutOfResourcesError, StoreUnavailableError
from pdfsvc.app.catalog import QrCatalog
from pdfsvc.app.export import build_folder_pdf
from pdfsvc.app.models import ExportAccepted, ExportRequest, FolderItemResponse, FolderItemsResponse
from pdfsvc.app.tasks import export_qr_sheet_task

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

app = FastAPI(title="PDF/QR Service")


@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/folders")
async def list_folders(blob_store: BlobStore = Depends(get_blob_store)):
    """Carpetas de generación (YYYY-MM-DD), la más reciente primero"""
    try:
        folders = await QrCatalog(blob_store).list_folders()
    except StoreUnavailableError as e:
        raise HTTPException(status_code=503, detail=e.message)
    return {"folders": folders}


@app.get("/folders/{folder}/items", response_model=FolderItemsResponse)
async def list_folder_items(folder: str, blob_store: BlobStore = Depends(get_blob_store)):
    """Imágenes de una carpeta, ordenadas por número y referencia"""
    try:
        items = await QrCatalog(blob_store).list_items(folder)
    except StoreUnavailableError as e:
        raise HTTPException(status_code=503, detail=e.message)

    return FolderItemsResponse(
        folder=folder,
        items=[
            FolderItemResponse(
                name=item.name,
                path=item.path,
                url=item.url,
                reference=item.reference,
                sequence_number=item.sequence_number,
            )
            for item in items
        ],
    )


@app.post("/exports/pdf")
async def export_pdf(request: ExportRequest, blob_store: BlobStore = Depends(get_blob_store)):
    """
    Genera la hoja PDF de una carpeta y la devuelve directamente

    Para carpetas grandes usar /exports/pdf/async.
    """
    try:
        filename, pdf_bytes, pages = await build_folder_pdf(
            QrCatalog(blob_store), request.folder, request.sheet_config()
        )
    except NothingExportedError as e:
        raise HTTPException(status_code=422, detail=e.message)
    except StoreUnavailableError as e:
        raise HTTPException(status_code=503, detail=e.message)
    except OutOfResourcesError as e:
        raise HTTPException(status_code=507, detail=e.message)

    logger.info(f"PDF {filename}: {pages} páginas")
    return StreamingResponse(
        BytesIO(pdf_bytes),
        media_type="application/pdf",
        headers={"Content-Disposition": f"attachment; filename={filename}"}
    )


@app.post("/exports/pdf/async", response_model=ExportAccepted, status_code=202)
async def export_pdf_async(request: ExportRequest):
    """Encolar el export; el PDF queda en EXPORT_DIR"""
    task = export_qr_sheet_task.delay(request=request.model_dump())
    logger.info(f"Export encolado: {task.id} ({request.folder})")
    return ExportAccepted(task_id=task.id)


@app.get("/exports/{task_id}")
async def export_status(task_id: str):
    """Progreso o resultado de un export encolado"""
    result = AsyncResult(task_id, app=celery_app)
    info = result.info
    if result.state == "FAILURE":
        info = {"status": "failed", "message": str(info)}
    return {"task_id": task_id, "state": result.state, "info": info if isinstance(info, dict) else None}
