"""Generación e import de tickets por batch (memoria acotada, item por item)"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterable, Iterator, Optional
import asyncio
import inspect
import logging

from app.core.config import settings
from shared.storage.ticket_store import TicketRecord, TicketStore
from shared.utils.exceptions import ErrorKind, StoreUnavailableError
from shared.utils.qr_generator import (
    build_payload,
    image_to_png_bytes,
    new_reference,
    new_token,
    render_ticket_image,
)
from services.ticket_generation.models.generation import EventData
from services.ticket_generation.services.image_sinks import ImageSink
from services.ticket_generation.services.roster_parser import TicketSpec, parse_roster

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], Any]


class BatchStatus(str, Enum):
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    OUT_OF_RESOURCES = "out_of_resources"
    STORE_UNAVAILABLE = "store_unavailable"
    FAILED = "failed"


@dataclass
class BatchResult:
    status: BatchStatus
    processed: int
    total: int
    message: str

    @property
    def kind(self) -> Optional[ErrorKind]:
        """Tipo de error para máquinas (None si terminó bien)"""
        return {
            BatchStatus.CANCELLED: ErrorKind.CANCELLED,
            BatchStatus.OUT_OF_RESOURCES: ErrorKind.OUT_OF_RESOURCES,
            BatchStatus.STORE_UNAVAILABLE: ErrorKind.STORE_UNAVAILABLE,
        }.get(self.status)

    def to_dict(self) -> dict:
        kind = self.kind
        return {
            "status": self.status.value,
            "kind": kind.value if kind else None,
            "processed": self.processed,
            "total": self.total,
            "message": self.message,
        }


def synthetic_specs(event: EventData) -> Iterator[TicketSpec]:
    """Specs de `quantity` tickets con referencia generada, secuencia 1..quantity"""
    for sequence in range(1, event.quantity + 1):
        reference = new_reference()
        yield TicketSpec(
            reference=reference,
            event_name=event.name,
            event_date=event.date,
            start_time=event.start,
            end_time=event.end,
            place=event.place,
            sequence_number=sequence,
            filename=f"ticket_{reference}.png",
        )


async def _maybe_await(value):
    if inspect.isawaitable(value):
        return await value
    return value


class BatchTicketGenerator:
    """
    Crea tickets de a uno: token → store (esperando confirmación) → imagen
    → destino → liberar imagen → progreso

    Nunca hay más de una imagen en memoria: la del item N+1 no se crea antes
    de que el store confirme el item N. El primer error corta el batch.
    """

    def __init__(
        self,
        store: TicketStore,
        sink: ImageSink,
        yield_every: Optional[int] = None,
        render: Callable = render_ticket_image,
    ):
        self.store = store
        self.sink = sink
        self.yield_every = yield_every or settings.BATCH_YIELD_EVERY
        self.render = render

    async def generate(self, event: EventData, on_progress: Optional[ProgressCallback] = None,
                       cancel=None) -> BatchResult:
        """Modo sintético: `event.quantity` tickets para el evento"""
        logger.info(f"Generando {event.quantity} tickets para '{event.name}' ({event.date})")
        return await self.run(synthetic_specs(event), event.quantity, on_progress, cancel)

    async def import_roster(self, text: str, on_progress: Optional[ProgressCallback] = None,
                            cancel=None) -> BatchResult:
        """Modo roster: un ticket por línea válida del CSV, en orden de archivo"""
        specs = parse_roster(text)
        logger.info(f"Importando {len(specs)} tickets desde roster")
        return await self.run(specs, len(specs), on_progress, cancel)

    async def run(self, specs: Iterable[TicketSpec], total: int,
                  on_progress: Optional[ProgressCallback] = None, cancel=None) -> BatchResult:
        """
        Procesar los specs en orden

        Args:
            specs: Tickets a crear (iterable perezoso o lista)
            total: Cantidad esperada, para el progreso
            on_progress: Callback (procesados, total), sync o async
            cancel: Objeto con is_set() (sync o async) revisado entre items

        Returns:
            BatchResult con el estado terminal
        """
        processed = 0

        try:
            for spec in specs:
                if cancel is not None and await _maybe_await(cancel.is_set()):
                    logger.info(f"Batch cancelado tras {processed}/{total} tickets")
                    return BatchResult(BatchStatus.CANCELLED, processed, total,
                                       f"Cancelado: {processed} de {total} tickets creados")

                await self._process(spec)
                processed += 1

                if on_progress is not None:
                    await _maybe_await(on_progress(processed, total))

                if processed % self.yield_every == 0:
                    await asyncio.sleep(0.005)

        except MemoryError as e:
            logger.error(f"Memoria insuficiente tras {processed} tickets: {e}")
            return BatchResult(BatchStatus.OUT_OF_RESOURCES, processed, total,
                               f"Memoria insuficiente: {e}")
        except StoreUnavailableError as e:
            logger.error(f"Store no disponible tras {processed} tickets: {e.message}")
            return BatchResult(BatchStatus.STORE_UNAVAILABLE, processed, total, f"Error: {e.message}")
        except Exception as e:
            logger.error(f"Error en batch tras {processed} tickets: {e}", exc_info=True)
            return BatchResult(BatchStatus.FAILED, processed, total, f"Error generación: {e}")

        logger.info(f"Batch terminado: {processed} tickets")
        return BatchResult(BatchStatus.COMPLETED, processed, total, f"Creados {processed} tickets")

    async def _process(self, spec: TicketSpec) -> str:
        token = new_token()
        payload = build_payload(token)

        record = TicketRecord(
            payload=payload,
            token=token,
            reference=spec.reference,
            event_name=spec.event_name,
            event_date=spec.event_date,
            start_time=spec.start_time,
            end_time=spec.end_time,
            place=spec.place,
            sequence_number=spec.sequence_number,
        )
        ticket_id = await self.store.add(record)

        img = self.render(payload, spec.reference, spec.sequence_number)
        try:
            png_bytes = image_to_png_bytes(img)
        finally:
            img.close()

        await self.sink.write(spec.filename, png_bytes, spec.reference, spec.sequence_number)
        del png_bytes
        return ticket_id
