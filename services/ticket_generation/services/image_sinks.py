"""Destinos de las imágenes QR generadas: galería local o blob store"""
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional
import asyncio
import logging

from app.core.config import settings
from shared.storage.blob_store import BlobStore
from shared.utils.exceptions import StoreUnavailableError
from shared.utils.retry import retry_with_backoff

logger = logging.getLogger(__name__)

BLOB_ROOT = "qrcodes"
GALLERY_FOLDER = "QRM"


def check_filename(filename: str) -> str:
    """Solo nombres simples, sin separadores ni '..'"""
    if not filename or "/" in filename or "\\" in filename or ".." in filename:
        raise ValueError(f"Nombre de archivo inválido: {filename!r}")
    return filename


def blob_path(generation_date: str, filename: str) -> str:
    """qrcodes/<YYYY-MM-DD>/<archivo>"""
    return f"{BLOB_ROOT}/{generation_date}/{check_filename(filename)}"


class ImageSink(ABC):
    """Recibe una imagen PNG por ticket; la organización depende del destino"""

    def __init__(self, generation_date: str):
        self.generation_date = generation_date

    @abstractmethod
    async def write(self, filename: str, png_bytes: bytes, reference: str, sequence_number: int) -> str:
        """Guardar la imagen y devolver su ubicación"""


class GallerySink(ImageSink):
    """Carpeta local por fecha de generación: <root>/QRM/<YYYY-MM-DD>/"""

    def __init__(self, generation_date: str, root: Optional[str] = None):
        super().__init__(generation_date)
        self.folder = Path(root or settings.GALLERY_ROOT) / GALLERY_FOLDER / generation_date

    async def write(self, filename: str, png_bytes: bytes, reference: str, sequence_number: int) -> str:
        target = self.folder / check_filename(filename)
        await asyncio.to_thread(self._write_file, target, png_bytes)
        return str(target)

    def _write_file(self, target: Path, data: bytes):
        if not target.resolve().is_relative_to(self.folder.resolve()):
            raise ValueError(f"Destino fuera de la galería: {target}")
        target.parent.mkdir(parents=True, exist_ok=True)
        # Archivo temporal + rename: la galería nunca ve una imagen a medias
        pending = target.with_name(f".{target.name}.pending")
        pending.write_bytes(data)
        pending.replace(target)


class BlobSink(ImageSink):
    """
    Blob store bajo qrcodes/<fecha>/<archivo>

    La metadata {no, ref} permite reconstruir orden y etiqueta al exportar
    sin parsear nombres de archivo.
    """

    def __init__(self, generation_date: str, blob_store: BlobStore, max_retries: int = 2):
        super().__init__(generation_date)
        self.blob_store = blob_store
        self.max_retries = max_retries

    async def write(self, filename: str, png_bytes: bytes, reference: str, sequence_number: int) -> str:
        path = blob_path(self.generation_date, filename)
        metadata = {"no": str(sequence_number), "ref": reference}

        async def upload():
            await self.blob_store.upload(path, png_bytes, metadata=metadata, content_type="image/png")

        await retry_with_backoff(
            upload,
            max_retries=self.max_retries,
            initial_delay=0.5,
            max_delay=5.0,
            exceptions=(StoreUnavailableError,)
        )
        return path
