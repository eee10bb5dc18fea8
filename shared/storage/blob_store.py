"""Contrato del blob store (imágenes QR, PDF) y adaptador MinIO"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import timedelta
from io import BytesIO
from typing import Dict, List, Optional
from urllib.parse import urlparse
import asyncio
import logging

from minio import Minio
from minio.error import S3Error
from urllib3.exceptions import HTTPError

from app.core.config import settings
from shared.utils.exceptions import StoreUnavailableError

logger = logging.getLogger(__name__)

USER_METADATA_PREFIX = "x-amz-meta-"


@dataclass
class BlobListing:
    """Contenido directo de un prefijo: subcarpetas y objetos"""
    subfolders: List[str] = field(default_factory=list)
    items: List[str] = field(default_factory=list)


class BlobStore(ABC):

    @abstractmethod
    async def upload(self, path: str, data: bytes, metadata: Optional[Dict[str, str]] = None,
                     content_type: str = "application/octet-stream") -> None:
        """Subir un objeto con metadata custom"""

    @abstractmethod
    async def list(self, prefix: str) -> BlobListing:
        """Listar un nivel bajo el prefijo: nombres de subcarpetas y rutas completas de objetos"""

    @abstractmethod
    async def get_metadata(self, path: str) -> Dict[str, str]:
        """Metadata custom del objeto (sin prefijos del proveedor)"""

    @abstractmethod
    async def get_download_url(self, path: str) -> str:
        """URL de descarga del objeto"""


def _basename(path: str) -> str:
    return path.rstrip("/").rsplit("/", 1)[-1]


class MinioBlobStore(BlobStore):
    """BlobStore sobre MinIO/S3. El SDK es síncrono: se ejecuta en threads."""

    def __init__(self, client: Optional[Minio] = None, bucket: Optional[str] = None):
        if client is None:
            endpoint = urlparse(settings.MINIO_ENDPOINT)
            client = Minio(
                endpoint.netloc or endpoint.path,
                access_key=settings.MINIO_ACCESS_KEY,
                secret_key=settings.MINIO_SECRET_KEY,
                secure=settings.MINIO_SECURE,
            )
        self.client = client
        self.bucket = bucket or settings.MINIO_BUCKET_QRCODES
        self._bucket_checked = False

    async def _ensure_bucket(self):
        if self._bucket_checked:
            return
        exists = await asyncio.to_thread(self.client.bucket_exists, self.bucket)
        if not exists:
            logger.info(f"Creando bucket {self.bucket}")
            await asyncio.to_thread(self.client.make_bucket, self.bucket)
        self._bucket_checked = True

    async def upload(self, path: str, data: bytes, metadata: Optional[Dict[str, str]] = None,
                     content_type: str = "application/octet-stream") -> None:
        try:
            await self._ensure_bucket()
            await asyncio.to_thread(
                self.client.put_object,
                bucket_name=self.bucket,
                object_name=path,
                data=BytesIO(data),
                length=len(data),
                content_type=content_type,
                metadata=metadata or {},
            )
        except (S3Error, HTTPError, OSError) as e:
            logger.error(f"Error subiendo {path} a MinIO: {e}")
            raise StoreUnavailableError(f"No se pudo subir {path}: {e}")

    async def list(self, prefix: str) -> BlobListing:
        prefix = prefix.rstrip("/") + "/"

        def _list():
            return list(self.client.list_objects(self.bucket, prefix=prefix, recursive=False))

        try:
            objects = await asyncio.to_thread(_list)
        except (S3Error, HTTPError, OSError) as e:
            raise StoreUnavailableError(f"No se pudo listar {prefix}: {e}")

        listing = BlobListing()
        for obj in objects:
            if obj.is_dir:
                listing.subfolders.append(_basename(obj.object_name))
            else:
                listing.items.append(obj.object_name)
        return listing

    async def get_metadata(self, path: str) -> Dict[str, str]:
        try:
            stat = await asyncio.to_thread(self.client.stat_object, self.bucket, path)
        except (S3Error, HTTPError, OSError) as e:
            raise StoreUnavailableError(f"No se pudo leer metadata de {path}: {e}")

        metadata = {}
        for key, value in (stat.metadata or {}).items():
            if key.lower().startswith(USER_METADATA_PREFIX):
                metadata[key[len(USER_METADATA_PREFIX):].lower()] = value
        return metadata

    async def get_download_url(self, path: str) -> str:
        try:
            return await asyncio.to_thread(
                self.client.presigned_get_object,
                self.bucket,
                path,
                expires=timedelta(seconds=settings.MINIO_URL_EXPIRE_SECONDS),
            )
        except (S3Error, HTTPError, OSError) as e:
            raise StoreUnavailableError(f"No se pudo generar URL para {path}: {e}")
