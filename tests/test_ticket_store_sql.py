import asyncio

from shared.storage.ticket_store import SqlTicketStore
from shared.utils.qr_generator import build_payload, new_token
from services.ticket_validation.services.ticket_service import TicketValidationService, ValidationKind
from tests.doubles import FIXED_NOW, make_record


async def test_add_and_get(session_maker):
    payload = build_payload(new_token())
    async with session_maker() as db:
        ticket_id = await SqlTicketStore(db).add(make_record(payload, reference="ab12cd34"))

    async with session_maker() as db:
        record = await SqlTicketStore(db).get(ticket_id)

    assert record.payload == payload
    assert record.reference == "ab12cd34"
    assert record.control_count == 0
    assert record.status == "valid"
    assert record.first_validated_at is None


async def test_get_with_invalid_id_returns_none(session_maker):
    async with session_maker() as db:
        assert await SqlTicketStore(db).get("no-es-un-uuid") is None


async def test_register_control_unknown_payload(session_maker):
    async with session_maker() as db:
        assert await SqlTicketStore(db).register_control(build_payload(new_token()), FIXED_NOW) is None


async def test_first_validation_fields_written_once(session_maker):
    payload = build_payload(new_token())
    async with session_maker() as db:
        store = SqlTicketStore(db)
        await store.add(make_record(payload))

        first = await store.register_control(payload, FIXED_NOW)
        second = await store.register_control(payload, FIXED_NOW.replace(hour=23))

    assert first.is_first
    assert first.record.control_count == 1
    assert first.record.status == "OK"
    assert first.record.first_validated_at is not None
    assert first.record.first_validated_at_client is not None

    assert not second.is_first
    assert second.previous_count == 1
    assert second.record.control_count == 2
    assert second.record.first_validated_at == first.record.first_validated_at
    assert second.record.first_validated_at_client == first.record.first_validated_at_client


async def test_validation_through_sql_store(session_maker):
    payload = build_payload(new_token())
    async with session_maker() as db:
        store = SqlTicketStore(db)
        await store.add(make_record(payload))
        service = TicketValidationService(store, clock=lambda: FIXED_NOW)

        first = await service.validate(payload)
        second = await service.validate(payload)

    assert first.kind == ValidationKind.FIRST_VALID
    assert first.new_count == 1
    assert second.kind == ValidationKind.DUPLICATE
    assert second.new_count == 2
    assert first.first_validated_at is not None
    assert first.first_validated_at.tzinfo is not None
    assert second.first_validated_at == first.first_validated_at


async def test_concurrent_scans_yield_single_first_valid(session_maker):
    payload = build_payload(new_token())
    async with session_maker() as db:
        await SqlTicketStore(db).add(make_record(payload))

    async def scan():
        async with session_maker() as db:
            return await TicketValidationService(SqlTicketStore(db), clock=lambda: FIXED_NOW).validate(payload)

    results = await asyncio.gather(*(scan() for _ in range(8)))

    kinds = [r.kind for r in results]
    assert kinds.count(ValidationKind.FIRST_VALID) == 1
    assert kinds.count(ValidationKind.DUPLICATE) == 7
    assert sorted(r.new_count for r in results) == list(range(1, 9))

    async with session_maker() as db:
        counts = await SqlTicketStore(db).scope_counts("Concierto", "2024-05-18")
        tickets = await SqlTicketStore(db).find_by_scope("Concierto")
    assert counts.scanned == 1
    assert tickets[0].control_count == 8


async def test_scope_counts_and_find_by_scope(session_maker):
    async with session_maker() as db:
        store = SqlTicketStore(db)
        payloads = []
        for n in range(1, 11):
            payload = build_payload(new_token())
            payloads.append(payload)
            await store.add(make_record(payload, reference=f"ref{n:05d}", sequence_number=n))
        await store.add(make_record(build_payload(new_token()), event_date="2024-05-19"))
        await store.add(make_record(build_payload(new_token()), event_name="Otro evento"))

        for payload in payloads[:4]:
            await store.register_control(payload, FIXED_NOW)
        await store.register_control(payloads[0], FIXED_NOW)

        counts = await store.scope_counts("Concierto", "2024-05-18")
        all_dates = await store.scope_counts("Concierto")
        tickets = await store.find_by_scope("Concierto", "2024-05-18")

    assert (counts.total, counts.scanned) == (10, 4)
    assert (all_dates.total, all_dates.scanned) == (11, 4)
    assert [t.sequence_number for t in tickets] == list(range(1, 11))


async def test_scope_counts_empty_scope(session_maker):
    async with session_maker() as db:
        counts = await SqlTicketStore(db).scope_counts("Nadie")
    assert (counts.total, counts.scanned) == (0, 0)
