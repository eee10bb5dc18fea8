from contextlib import asynccontextmanager
from types import SimpleNamespace

import pytest

from services.ticket_generation.models.generation import EventData
from services.ticket_generation.services.image_sinks import BlobSink, GallerySink
from services.ticket_generation.tasks import generation_tasks
from shared.cache.redis_client import LockNotAcquired


class FakeRedis:
    def __init__(self):
        self.keys = {}

    async def set(self, key, value, ex=None):
        self.keys[key] = value

    async def exists(self, key):
        return int(key in self.keys)

    async def delete(self, key):
        self.keys.pop(key, None)


class FakeLock:
    held = False

    def __init__(self, key, timeout=10, expire=30):
        self.key = key
        self.extended = 0

    async def __aenter__(self):
        if FakeLock.held:
            raise LockNotAcquired(self.key)
        return self

    async def __aexit__(self, *exc):
        return None

    async def extend(self):
        self.extended += 1


@pytest.fixture
def fake_infra(monkeypatch, store, tmp_path):
    redis = FakeRedis()

    async def noop(*args, **kwargs):
        return None

    async def get_redis():
        return redis

    @asynccontextmanager
    async def session_maker():
        yield None

    monkeypatch.setattr(generation_tasks, "connection",
                        SimpleNamespace(init_db=noop, close_db=noop, async_session_maker=session_maker))
    monkeypatch.setattr(generation_tasks, "SqlTicketStore", lambda db: store)
    monkeypatch.setattr(generation_tasks, "DistributedLock", FakeLock)
    monkeypatch.setattr(generation_tasks, "get_redis", get_redis)
    monkeypatch.setattr(generation_tasks, "close_redis", noop)
    monkeypatch.setattr(generation_tasks, "build_sink", lambda date, cloud: GallerySink(date, root=str(tmp_path)))
    FakeLock.held = False
    return redis


def make_task(task_id="task-1"):
    states = []
    task = SimpleNamespace(
        request=SimpleNamespace(id=task_id),
        update_state=lambda state, meta: states.append((state, meta)),
    )
    return task, states


def synthetic(quantity):
    event = EventData(name="Gala", date="2024-06-01", start="20:00", end="23:00", place="Sala", quantity=quantity)
    return lambda generator, on_progress, cancel: generator.generate(event, on_progress=on_progress, cancel=cancel)


async def test_run_ticket_batch_reports_progress(fake_infra, store):
    task, states = make_task()

    result = await generation_tasks.run_ticket_batch(task, "generation", synthetic(25), False, "2024-06-01")

    assert result["status"] == "completed"
    assert result["processed"] == 25
    assert len(store.tickets) == 25
    assert [meta["processed"] for _, meta in states] == [10, 20, 25]
    assert states[-1] == ("PROGRESS", {"processed": 25, "total": 25, "progress": 1.0})


async def test_run_ticket_batch_honours_cancel_flag(fake_infra, store):
    await generation_tasks.request_cancel("task-9")
    task, _ = make_task("task-9")

    result = await generation_tasks.run_ticket_batch(task, "generation", synthetic(5), False)

    assert result["status"] == "cancelled"
    assert result["kind"] == "cancelled"
    assert store.tickets == {}
    # El flag se limpia al terminar
    assert fake_infra.keys == {}


async def test_run_ticket_batch_rejected_when_locked(fake_infra, store):
    FakeLock.held = True
    task, _ = make_task()

    result = await generation_tasks.run_ticket_batch(task, "import", synthetic(5), False)

    assert result["status"] == "rejected"
    assert store.tickets == {}


def test_progress_meta():
    assert generation_tasks.progress_meta(0, 0)["progress"] == 0.0
    assert generation_tasks.progress_meta(1, 3)["progress"] == 0.3333


def test_build_sink_selects_destination(monkeypatch):
    monkeypatch.setattr(generation_tasks, "MinioBlobStore", lambda: object())

    assert isinstance(generation_tasks.build_sink("2024-06-01", True), BlobSink)
    assert isinstance(generation_tasks.build_sink("2024-06-01", False), GallerySink)
