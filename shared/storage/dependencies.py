"""Dependencies de FastAPI para los stores"""
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from shared.database.session import get_db
from shared.storage.blob_store import BlobStore, MinioBlobStore
from shared.storage.ticket_store import SqlTicketStore, TicketStore


async def get_ticket_store(db: AsyncSession = Depends(get_db)) -> TicketStore:
    """Store de tickets sobre la sesión del request"""
    return SqlTicketStore(db)


def get_blob_store() -> BlobStore:
    """Blob store configurado (MinIO)"""
    return MinioBlobStore()
