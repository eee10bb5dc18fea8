"""Catálogo de imágenes QR en el blob store (carpetas por fecha de generación)"""
from contextlib import asynccontextmanager
from pathlib import PurePosixPath
from typing import AsyncIterator, Dict, List, Optional
import logging
import re

import httpx

from shared.storage.blob_store import BlobStore
from pdfsvc.app.layout import ExportItem, ImageFetcher, sort_items

logger = logging.getLogger(__name__)

ROOT_PREFIX = "qrcodes/"
NUMBER_KEYS = ("no", "number", "order", "ticketno", "ticket_no")
REFERENCE_KEYS = ("ref", "reference", "ticketref", "ticket_ref")
HEX_RUN = re.compile(r"[A-Fa-f0-9]{6,}")


def parse_number(metadata: Dict[str, str]) -> Optional[int]:
    for key in NUMBER_KEYS:
        value = metadata.get(key)
        if value is None:
            continue
        try:
            return int(value.strip())
        except ValueError:
            continue
    return None


def reference_from_name(filename: str) -> str:
    """Primer tramo de 6+ caracteres hex del nombre, o el nombre sin extensión"""
    stem = PurePosixPath(filename).stem
    match = HEX_RUN.search(stem)
    return match.group(0) if match else stem


def parse_reference(metadata: Dict[str, str], filename: str) -> str:
    for key in REFERENCE_KEYS:
        value = (metadata.get(key) or "").strip()
        if value:
            return value
    return reference_from_name(filename)


class CatalogItem(ExportItem):
    """ExportItem con la ubicación del blob"""

    def __init__(self, path: str, url: str, reference: Optional[str], sequence_number: Optional[int]):
        super().__init__(
            image_bytes=None,
            reference=reference,
            sequence_number=sequence_number,
            name=PurePosixPath(path).name,
        )
        self.path = path
        self.url = url


class QrCatalog:

    def __init__(self, blob_store: BlobStore, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.blob_store = blob_store
        self.transport = transport

    async def list_folders(self) -> List[str]:
        """Carpetas de fecha bajo qrcodes/, la más reciente primero"""
        listing = await self.blob_store.list(ROOT_PREFIX)
        return sorted(listing.subfolders, reverse=True)

    async def list_items(self, folder: str) -> List[CatalogItem]:
        """Imágenes de una carpeta con número y referencia, ya ordenadas"""
        listing = await self.blob_store.list(f"{ROOT_PREFIX}{folder}/")
        items = []
        for path in listing.items:
            name = PurePosixPath(path).name
            metadata = {k.lower(): v for k, v in (await self.blob_store.get_metadata(path)).items()}
            items.append(CatalogItem(
                path=path,
                url=await self.blob_store.get_download_url(path),
                reference=parse_reference(metadata, name),
                sequence_number=parse_number(metadata),
            ))
        logger.info(f"Carpeta {folder}: {len(items)} imágenes")
        return sort_items(items)

    @asynccontextmanager
    async def fetcher(self, timeout: float = 30.0) -> AsyncIterator[ImageFetcher]:
        """
        Cliente HTTP abierto durante el export; entrega una función que baja
        una imagen por vez

        Una descarga fallida devuelve None; el layout la trata como imagen no
        decodificable.
        """
        async with httpx.AsyncClient(timeout=timeout, transport=self.transport) as client:
            async def fetch(item: CatalogItem) -> Optional[bytes]:
                try:
                    response = await client.get(item.url)
                    response.raise_for_status()
                except httpx.HTTPError as e:
                    logger.warning(f"No se pudo descargar {item.path}: {e}")
                    return None
                return response.content

            yield fetch
