"""Export de una carpeta del blob store a una hoja PDF"""
from pathlib import Path
from typing import Optional, Tuple
import asyncio
import logging

from app.core.config import settings
from shared.utils.exceptions import OutOfResourcesError
from pdfsvc.app.catalog import QrCatalog
from pdfsvc.app.layout import PdfSheetLayoutEngine, ProgressCallback, SheetConfig, export_filename

logger = logging.getLogger(__name__)


async def build_folder_pdf(
    catalog: QrCatalog,
    folder: str,
    config: SheetConfig,
    on_progress: Optional[ProgressCallback] = None,
) -> Tuple[str, bytes, int]:
    """
    Armar el PDF de una carpeta

    Las imágenes se bajan y dibujan de a una; en memoria queda solo el PDF
    en construcción.

    Returns:
        (nombre de archivo, bytes del PDF, cantidad de páginas)
    """
    items = await catalog.list_items(folder)
    logger.info(f"Exportando {len(items)} imágenes de {folder}")

    engine = PdfSheetLayoutEngine()
    try:
        async with catalog.fetcher() as fetch:
            pdf_bytes, page_set = await engine.export(items, config, fetch, on_progress)
    except MemoryError as e:
        raise OutOfResourcesError(f"Memoria insuficiente generando el PDF: {e}")

    return export_filename(folder), pdf_bytes, len(page_set.pages)


def _write_export(target: Path, data: bytes):
    target.parent.mkdir(parents=True, exist_ok=True)
    pending = target.with_name(f".{target.name}.pending")
    pending.write_bytes(data)
    pending.replace(target)


async def save_export(filename: str, pdf_bytes: bytes, export_dir: Optional[str] = None) -> str:
    """Guardar el PDF en la carpeta de descargas"""
    target = Path(export_dir or settings.EXPORT_DIR) / filename
    await asyncio.to_thread(_write_export, target, pdf_bytes)
    logger.info(f"PDF guardado en {target}")
    return str(target)
