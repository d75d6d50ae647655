import pytest
from fastapi.testclient import TestClient

from conftest import StubRecognizer
from ocr_gateway.config import Settings
from ocr_gateway.main import create_app
from ocr_gateway.recognizers.base import RecognitionError, StructuredJSON


def _settings(**overrides) -> Settings:
    values = {
        "provider": "stub",
        "max_workers": 2,
        "max_images_per_request": 3,
        "max_image_size_mb": 1,
        "supported_formats": ["png", "jpg"],
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def _files(*items):
    return [("images", (name, content, "image/png")) for name, content in items]


@pytest.fixture
def recognizers():
    return {
        "stub": StubRecognizer(),
        "json": StubRecognizer(lambda _: StructuredJSON('{"blocks":[],"fullText":"Текст"}')),
        "gemini": StubRecognizer(),
    }


@pytest.fixture
def client(recognizers):
    app = create_app(_settings(), recognizers=recognizers)
    with TestClient(app) as test_client:
        yield test_client


# =============================================================================
# OCR
# =============================================================================


def test_batch_results_in_upload_order(client) -> None:
    response = client.post(
        "/api/v1/ocr",
        files=_files(("a.png", b"first"), ("b.jpg", b"second"), ("c.gif", b"third")),
    )

    assert response.status_code == 200
    body = response.json()
    assert [r["filename"] for r in body["results"]] == ["a.png", "b.jpg", "c.gif"]
    assert body["results"][0] == {"filename": "a.png", "text": "first"}
    assert body["results"][1]["text"] == "second"
    assert body["results"][2]["error"] == "unsupported format: gif"
    assert body["results"][2]["text"] == ""
    assert body["total_images"] == 3
    assert body["successful"] == 2
    assert body["failed"] == 1
    assert "processed_at" in body


def test_structured_result_returned_as_object(client) -> None:
    response = client.post("/api/v1/ocr/json", files=_files(("scan.png", b"x")))

    assert response.status_code == 200
    assert response.json()["results"][0]["text"] == {"blocks": [], "fullText": "Текст"}
    assert "Текст" in response.text


def test_null_payload_keeps_text_key() -> None:
    recognizers = {"stub": StubRecognizer(lambda _: StructuredJSON("null"))}
    app = create_app(_settings(), recognizers=recognizers)

    with TestClient(app) as test_client:
        response = test_client.post("/api/v1/ocr", files=_files(("a.png", b"x")))

    assert response.json()["results"][0] == {"filename": "a.png", "text": None}


def test_non_standard_constant_returned_as_text() -> None:
    recognizers = {"stub": StubRecognizer(lambda _: "Infinity")}
    app = create_app(_settings(), recognizers=recognizers)

    with TestClient(app) as test_client:
        response = test_client.post("/api/v1/ocr", files=_files(("a.png", b"x")))

    assert response.json()["results"][0]["text"] == "Infinity"


def test_provider_name_is_case_insensitive(client) -> None:
    response = client.post("/api/v1/ocr/JSON", files=_files(("scan.png", b"x")))

    assert response.status_code == 200


def test_oversized_image_reported_per_file(client, recognizers) -> None:
    big = b"0" * (1024 * 1024 + 1)

    response = client.post(
        "/api/v1/ocr", files=_files(("big.png", big), ("small.png", b"ok"))
    )

    body = response.json()
    assert response.status_code == 200
    assert "exceeds maximum" in body["results"][0]["error"]
    assert body["results"][1]["text"] == "ok"
    assert recognizers["stub"].calls == 1


def test_recognition_error_reported_per_file() -> None:
    def handler(data: bytes):
        raise RecognitionError("backend unavailable")

    app = create_app(_settings(), recognizers={"stub": StubRecognizer(handler)})
    with TestClient(app) as test_client:
        response = test_client.post("/api/v1/ocr", files=_files(("a.png", b"x")))

    assert response.status_code == 200
    assert response.json()["results"][0]["error"] == "backend unavailable"
    assert response.json()["failed"] == 1


def test_no_images(client) -> None:
    response = client.post("/api/v1/ocr", data={"other": "value"})

    assert response.status_code == 400
    assert response.json() == {
        "error": "validation_error",
        "message": "no images provided",
    }


def test_too_many_images(client, recognizers) -> None:
    response = client.post(
        "/api/v1/ocr",
        files=_files(*[(f"{i}.png", b"x") for i in range(4)]),
    )

    assert response.status_code == 400
    assert response.json()["message"] == "maximum 3 images allowed, got 4"
    assert recognizers["stub"].calls == 0


def test_unknown_provider(client) -> None:
    response = client.post("/api/v1/ocr/abbyy", files=_files(("a.png", b"x")))

    assert response.status_code == 404
    assert response.json()["error"] == "unknown_provider"


def test_internal_fault_returns_500(client, monkeypatch) -> None:
    def broken(self, *args, **kwargs):
        raise RuntimeError("boom")

    monkeypatch.setattr(
        "ocr_gateway.services.batch_processor.BatchProcessor.process_images", broken
    )

    response = client.post("/api/v1/ocr", files=_files(("a.png", b"x")))

    assert response.status_code == 500
    assert response.json() == {
        "error": "internal_server_error",
        "message": "failed to process images",
    }


def test_gemini_requires_auth_key_when_configured(recognizers) -> None:
    app = create_app(_settings(gemini_auth_key="secret"), recognizers=recognizers)

    with TestClient(app) as test_client:
        denied = test_client.post("/api/v1/ocr/gemini", files=_files(("a.png", b"x")))
        wrong = test_client.post(
            "/api/v1/ocr/gemini",
            files=_files(("a.png", b"x")),
            headers={"X-Gemini-API-Key": "nope"},
        )
        allowed = test_client.post(
            "/api/v1/ocr/gemini",
            files=_files(("a.png", b"x")),
            headers={"X-Gemini-API-Key": "secret"},
        )

    assert denied.status_code == 401
    assert denied.json()["error"] == "authentication_error"
    assert wrong.status_code == 401
    assert allowed.status_code == 200
    assert recognizers["gemini"].calls == 1


def test_gemini_open_without_auth_key(client) -> None:
    response = client.post("/api/v1/ocr/gemini", files=_files(("a.png", b"x")))

    assert response.status_code == 200


def test_busy_server_rejects_with_429(recognizers) -> None:
    app = create_app(_settings(max_concurrent_users=1), recognizers=recognizers)

    with TestClient(app) as test_client:
        slots = app.state.request_slots
        assert slots.acquire(blocking=False)
        try:
            busy = test_client.post("/api/v1/ocr", files=_files(("a.png", b"x")))
        finally:
            slots.release()
        free = test_client.post("/api/v1/ocr", files=_files(("a.png", b"x")))

    assert busy.status_code == 429
    assert busy.json() == {
        "error": "too many concurrent requests",
        "message": "server is busy, please try again later",
    }
    assert free.status_code == 200
    assert recognizers["stub"].calls == 1


def test_request_slot_released_after_error(client) -> None:
    for _ in range(3):
        assert client.post("/api/v1/ocr", data={"a": "b"}).status_code == 400

    assert client.app.state.request_slots.acquire(blocking=False)
    client.app.state.request_slots.release()


def test_per_request_worker_pool(recognizers) -> None:
    app = create_app(_settings(worker_pool_scope="request"), recognizers=recognizers)

    with TestClient(app) as test_client:
        response = test_client.post(
            "/api/v1/ocr", files=_files(("a.png", b"x"), ("b.png", b"y"))
        )

    assert response.json()["successful"] == 2


def test_recognizers_closed_on_shutdown(recognizers) -> None:
    app = create_app(_settings(), recognizers=recognizers)

    with TestClient(app):
        pass

    assert all(r.closed for r in recognizers.values())


# =============================================================================
# История
# =============================================================================


def test_history_flow(client) -> None:
    headers = {"X-Client-ID": "client-1"}

    first = client.post(
        "/api/v1/history",
        json={"imageBase64": "aGk=", "ocrResult": {"text": "один"}},
        headers=headers,
    )
    second = client.post(
        "/api/v1/history",
        json={"imageBase64": "aGk=", "ocrResult": "два"},
        headers=headers,
    )

    assert first.status_code == 200
    entry = first.json()["entry"]
    assert set(entry) == {"id", "imageBase64", "ocrResult", "createdAt"}
    assert entry["ocrResult"] == {"text": "один"}

    entries = client.get("/api/v1/history", headers=headers).json()["entries"]
    assert [e["id"] for e in entries] == [
        second.json()["entry"]["id"],
        entry["id"],
    ]

    other = client.get("/api/v1/history", headers={"X-Client-ID": "client-2"})
    assert other.json() == {"entries": []}

    deleted = client.delete(f"/api/v1/history/{entry['id']}", headers=headers)
    assert deleted.json() == {"deleted": True}
    missing = client.delete(f"/api/v1/history/{entry['id']}", headers=headers)
    assert missing.json() == {"deleted": False}

    cleared = client.delete("/api/v1/history", headers=headers)
    assert cleared.json() == {"cleared": True}
    assert client.get("/api/v1/history", headers=headers).json() == {"entries": []}


def test_history_requires_client_id(client) -> None:
    response = client.get("/api/v1/history")

    assert response.status_code == 400
    assert response.json()["error"] == "validation_error"


def test_history_rejects_invalid_body(client) -> None:
    response = client.post(
        "/api/v1/history",
        json=["not", "an", "object"],
        headers={"X-Client-ID": "client-1"},
    )

    assert response.status_code == 400
    assert response.json() == {
        "error": "validation_error",
        "message": "invalid request body",
    }


# =============================================================================
# Служебные эндпоинты
# =============================================================================


def test_health(client) -> None:
    response = client.get("/health")

    body = response.json()
    assert response.status_code == 200
    assert body["status"] == "OK"
    assert body["default_provider"] == "stub"
    assert set(body["providers"]) == {"stub", "json", "gemini"}
    assert body["config"]["max_images_per_request"] == 3


def test_ready(client) -> None:
    assert client.get("/ready").json() == {"ready": True}
