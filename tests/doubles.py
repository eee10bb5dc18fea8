"""Dobles en memoria de TicketStore y BlobStore para los tests"""
from collections import Counter
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple
import io
import uuid

from PIL import Image

from shared.storage.blob_store import BlobListing, BlobStore
from shared.storage.ticket_store import ControlOutcome, ScopeCounts, TicketRecord, TicketStore
from shared.utils.exceptions import StoreUnavailableError

FIXED_NOW = datetime(2024, 5, 18, 21, 30, 0, tzinfo=timezone.utc)


class InMemoryTicketStore(TicketStore):
    """Doble de TicketStore con conteo de llamadas y fallos a pedido"""

    def __init__(self, server_clock: Optional[Callable[[], datetime]] = None):
        self.tickets: Dict[str, TicketRecord] = {}
        self.calls = Counter()
        self.fail = False
        self.fail_after_adds: Optional[int] = None
        self.server_clock = server_clock

    def _check(self, op: str):
        self.calls[op] += 1
        if self.fail:
            raise StoreUnavailableError(f"store caído ({op})")

    @property
    def total_calls(self) -> int:
        return sum(self.calls.values())

    async def add(self, ticket: TicketRecord) -> str:
        self._check("add")
        if self.fail_after_adds is not None and len(self.tickets) >= self.fail_after_adds:
            raise StoreUnavailableError("store caído (add)")
        ticket.id = str(uuid.uuid4())
        ticket.created_at = FIXED_NOW
        self.tickets[ticket.payload] = replace(ticket)
        return ticket.id

    async def get(self, ticket_id: str) -> Optional[TicketRecord]:
        self._check("get")
        for ticket in self.tickets.values():
            if ticket.id == ticket_id:
                return replace(ticket)
        return None

    async def register_control(self, payload: str, client_time: datetime) -> Optional[ControlOutcome]:
        self._check("register_control")
        ticket = self.tickets.get(payload)
        if ticket is None:
            return None
        previous = ticket.control_count
        ticket.control_count += 1
        ticket.status = "OK"
        if previous == 0:
            ticket.first_validated_at = self.server_clock() if self.server_clock else client_time
            ticket.first_validated_at_client = client_time
        return ControlOutcome(record=replace(ticket), previous_count=previous)

    def _in_scope(self, ticket: TicketRecord, event_name: str, event_date: Optional[str]) -> bool:
        return ticket.event_name == event_name and (not event_date or ticket.event_date == event_date)

    async def scope_counts(self, event_name: str, event_date: Optional[str] = None) -> ScopeCounts:
        self._check("scope_counts")
        scoped = [t for t in self.tickets.values() if self._in_scope(t, event_name, event_date)]
        return ScopeCounts(total=len(scoped), scanned=sum(1 for t in scoped if t.control_count > 0))

    async def find_by_scope(self, event_name: str, event_date: Optional[str] = None) -> List[TicketRecord]:
        self._check("find_by_scope")
        scoped = [replace(t) for t in self.tickets.values() if self._in_scope(t, event_name, event_date)]
        return sorted(scoped, key=lambda t: (t.sequence_number, t.reference))


class InMemoryBlobStore(BlobStore):

    def __init__(self):
        self.objects: Dict[str, Tuple[bytes, Dict[str, str], str]] = {}
        self.failures_left = 0
        self.upload_attempts = 0

    async def upload(self, path, data, metadata=None, content_type="application/octet-stream"):
        self.upload_attempts += 1
        if self.failures_left > 0:
            self.failures_left -= 1
            raise StoreUnavailableError(f"upload falló: {path}")
        self.objects[path] = (data, dict(metadata or {}), content_type)

    async def list(self, prefix):
        prefix = prefix.rstrip("/") + "/"
        listing = BlobListing()
        for path in sorted(self.objects):
            if not path.startswith(prefix):
                continue
            rest = path[len(prefix):]
            if "/" in rest:
                folder = rest.split("/", 1)[0]
                if folder not in listing.subfolders:
                    listing.subfolders.append(folder)
            else:
                listing.items.append(path)
        return listing

    async def get_metadata(self, path):
        return dict(self.objects[path][1])

    async def get_download_url(self, path):
        return f"http://blobs.test/{path}"


def make_record(payload: str, reference: str = "ref00001", event_name: str = "Concierto",
                event_date: Optional[str] = "2024-05-18", sequence_number: int = 1) -> TicketRecord:
    return TicketRecord(
        payload=payload,
        token=payload.rsplit("/", 1)[-1],
        reference=reference,
        event_name=event_name,
        event_date=event_date,
        start_time="20:00",
        end_time="23:00",
        place="Teatro",
        sequence_number=sequence_number,
    )


def png(width: int = 100, height: int = 100) -> bytes:
    """PNG blanco con un cuadrado negro"""
    img = Image.new("RGB", (width, height), "white")
    img.paste((0, 0, 0), (10, 10, 30, 30))
    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    return buffer.getvalue()
