from types import SimpleNamespace

import httpx
import pytest
from fastapi.testclient import TestClient

from shared.storage.dependencies import get_blob_store
from pdfsvc.app import main as pdf_main
from pdfsvc.app.catalog import QrCatalog
from tests.doubles import png


@pytest.fixture
def pdf_client(blob_store):
    pdf_main.app.dependency_overrides[get_blob_store] = lambda: blob_store
    yield TestClient(pdf_main.app)
    pdf_main.app.dependency_overrides.clear()


@pytest.fixture
def folder(blob_store):
    # Subida directa al doble (sin event loop)
    for n, ref in enumerate(["aaaa1111", "bbbb2222"], start=1):
        blob_store.objects[f"qrcodes/2024-05-18/ticket_{ref}.png"] = (png(100, 112), {"no": str(n), "ref": ref}, "image/png")
    return "2024-05-18"


def test_list_folders(pdf_client, folder):
    assert pdf_client.get("/folders").json() == {"folders": ["2024-05-18"]}


def test_list_folder_items(pdf_client, folder):
    data = pdf_client.get(f"/folders/{folder}/items").json()

    assert [i["reference"] for i in data["items"]] == ["aaaa1111", "bbbb2222"]
    assert data["items"][0]["sequence_number"] == 1


def test_export_pdf_streams_document(pdf_client, folder, monkeypatch):
    transport = httpx.MockTransport(lambda request: httpx.Response(200, content=png(100, 112)))
    monkeypatch.setattr(pdf_main, "QrCatalog", lambda store: QrCatalog(store, transport=transport))

    response = pdf_client.post("/exports/pdf", json={"folder": folder})

    assert response.status_code == 200
    assert response.headers["content-type"] == "application/pdf"
    assert f"qrcodes_{folder}_" in response.headers["content-disposition"]
    assert response.content.startswith(b"%PDF")


def test_export_pdf_nothing_exported(pdf_client, folder, monkeypatch):
    transport = httpx.MockTransport(lambda request: httpx.Response(500))
    monkeypatch.setattr(pdf_main, "QrCatalog", lambda store: QrCatalog(store, transport=transport))

    response = pdf_client.post("/exports/pdf", json={"folder": folder})

    assert response.status_code == 422


def test_export_pdf_async_enqueues(pdf_client, monkeypatch):
    calls = []
    monkeypatch.setattr(pdf_main, "export_qr_sheet_task",
                        SimpleNamespace(delay=lambda **kw: calls.append(kw) or SimpleNamespace(id="exp-1")))

    response = pdf_client.post("/exports/pdf/async", json={"folder": "2024-05-18", "single_per_page": True})

    assert response.status_code == 202
    assert response.json()["task_id"] == "exp-1"
    assert calls[0]["request"]["single_per_page"] is True
