from __future__ import annotations

import asyncio
import base64
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from pdfa_service.core.config import Settings
from pdfa_service.core.startup import GhostscriptNotFoundError, PlatformDefaults, ResolvedToolConfig
from pdfa_service.main import create_app

from tests.stubs import CONVERTED_PDF, SAMPLE_PDF, StubExecutor, make_result


ENCODED_SAMPLE = base64.b64encode(SAMPLE_PDF).decode("ascii")


@pytest.fixture
def client_for(tool_config: ResolvedToolConfig) -> Callable[[StubExecutor], object]:
    @contextmanager
    def _client(executor: StubExecutor) -> Iterator[TestClient]:
        with TestClient(create_app(tool_config=tool_config, executor=executor)) as client:
            yield client

    return _client


def test_healthz(client_for) -> None:
    with client_for(StubExecutor()) as client:
        response = client.get("/healthz")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_convert_success(client_for) -> None:
    executor = StubExecutor(make_result(), write_output=CONVERTED_PDF)
    with client_for(executor) as client:
        response = client.post("/v1/pdfa/convert", json={"base64Pdf": ENCODED_SAMPLE})

    assert response.status_code == 200
    payload = response.json()
    assert payload["success"] is True
    assert payload["errorMessage"] == ""
    assert base64.b64decode(payload["base64PdfA"]) == CONVERTED_PDF
    assert len(executor.calls) == 1


def test_line_wrapped_base64_is_accepted(client_for) -> None:
    executor = StubExecutor(make_result(), write_output=CONVERTED_PDF)
    wrapped = base64.encodebytes(SAMPLE_PDF).decode("ascii")
    with client_for(executor) as client:
        response = client.post("/v1/pdfa/convert", json={"base64Pdf": wrapped})

    assert response.status_code == 200
    assert response.json()["success"] is True
    assert executor.seen_inputs == [SAMPLE_PDF]


def test_legacy_routes_use_camel_case_names(client_for) -> None:
    executor = StubExecutor(make_result(), write_output=CONVERTED_PDF)
    with client_for(executor) as client:
        health = client.get("/api/PdfaConversion/health")
        response = client.post("/api/PdfaConversion/convert", json={"base64Pdf": ENCODED_SAMPLE})

    assert health.status_code == 200
    assert health.json()["status"] == "Healthy"
    assert health.json()["timestamp"]
    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "base64PdfA": base64.b64encode(CONVERTED_PDF).decode("ascii"),
        "errorMessage": "",
    }


def test_snake_case_request_name_is_still_accepted(client_for) -> None:
    executor = StubExecutor(make_result(), write_output=CONVERTED_PDF)
    with client_for(executor) as client:
        response = client.post("/v1/pdfa/convert", json={"base64_pdf": ENCODED_SAMPLE})

    assert response.status_code == 200
    assert executor.seen_inputs == [SAMPLE_PDF]


def test_oversized_body_is_rejected_before_parsing(tool_config: ResolvedToolConfig) -> None:
    executor = StubExecutor(make_result(), write_output=CONVERTED_PDF)
    app = create_app(tool_config=tool_config, executor=executor, max_request_bytes=1024)

    with TestClient(app) as client:
        response = client.post("/v1/pdfa/convert", json={"base64Pdf": "A" * 4096})
        small = client.post("/v1/pdfa/convert", json={"base64Pdf": ENCODED_SAMPLE})

    assert response.status_code == 413
    assert response.json()["success"] is False
    assert "exceeds maximum" in response.json()["errorMessage"]
    assert response.headers["X-Correlation-ID"]
    assert small.status_code == 200
    assert len(executor.calls) == 1


def test_correlation_id_is_generated_and_echoed(client_for) -> None:
    with client_for(StubExecutor()) as client:
        generated = client.get("/healthz")
        echoed = client.get("/healthz", headers={"X-Correlation-ID": "req-42"})

    assert generated.headers["X-Correlation-ID"]
    assert echoed.headers["X-Correlation-ID"] == "req-42"


def test_invalid_base64_is_bad_request(client_for) -> None:
    executor = StubExecutor()
    with client_for(executor) as client:
        response = client.post("/v1/pdfa/convert", json={"base64Pdf": "not-base64!!!"})

    assert response.status_code == 400
    payload = response.json()
    assert payload["success"] is False
    assert "invalid base64 format" in payload["errorMessage"]
    assert executor.calls == []


@pytest.mark.parametrize("body", [{"base64Pdf": ""}, {}, {"base64Pdf": 12}])
def test_malformed_request_is_bad_request(client_for, body: dict) -> None:
    with client_for(StubExecutor()) as client:
        response = client.post("/v1/pdfa/convert", json=body)

    assert response.status_code == 400
    assert response.json()["success"] is False
    assert response.json()["errorMessage"]


def test_oversized_input_is_rejected(client_for, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("pdfa_service.models.schemas.get_settings", lambda: Settings(max_input_bytes=64))
    big = base64.b64encode(b"%PDF" + b"x" * 1024).decode("ascii")

    with client_for(StubExecutor()) as client:
        response = client.post("/v1/pdfa/convert", json={"base64Pdf": big})

    assert response.status_code == 400
    assert "exceeds maximum" in response.json()["errorMessage"]


@pytest.mark.parametrize(
    ("executor", "status_code", "fragment"),
    [
        (StubExecutor(make_result(exit_code=-1, timed_out=True)), 504, "timeout of 5 seconds"),
        (StubExecutor(make_result(exit_code=1, stderr="bad PDF")), 500, "bad PDF"),
        (StubExecutor(make_result()), 500, "output file was not created"),
        (StubExecutor(make_result(exit_code=-1, cancelled=True)), 503, "cancelled"),
    ],
    ids=["timeout", "tool-failure", "output-missing", "cancelled"],
)
def test_failures_map_to_status_codes(client_for, executor: StubExecutor, status_code: int, fragment: str) -> None:
    with client_for(executor) as client:
        response = client.post("/v1/pdfa/convert", json={"base64Pdf": ENCODED_SAMPLE})

    assert response.status_code == status_code
    payload = response.json()
    assert payload["success"] is False
    assert payload["base64PdfA"] == ""
    assert fragment in payload["errorMessage"]


def test_shutdown_signals_running_conversions(tool_config: ResolvedToolConfig) -> None:
    executor = StubExecutor(make_result(), write_output=CONVERTED_PDF)
    app = create_app(tool_config=tool_config, executor=executor)

    with TestClient(app) as client:
        client.post("/v1/pdfa/convert", json={"base64Pdf": ENCODED_SAMPLE})
        shutdown_event = app.state.shutdown_event
        assert not shutdown_event.is_set()

    assert executor.cancel_events == [shutdown_event]
    assert shutdown_event.is_set()


def test_startup_fails_without_ghostscript(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    missing = PlatformDefaults(
        versioned_path=str(tmp_path / "gs{version}" / "gs"),
        fallback_path=str(tmp_path / "default" / "gs"),
        search_command="which",
        search_arguments="-a gs",
    )
    monkeypatch.setattr("pdfa_service.core.startup.platform_defaults", lambda: missing)
    monkeypatch.setattr(
        "pdfa_service.main.get_settings",
        lambda: Settings(temp_directory=str(tmp_path / "scratch")),
    )
    app = create_app(executor=StubExecutor(make_result(exit_code=1)))

    async def _start() -> None:
        async with app.router.lifespan_context(app):
            pass

    with pytest.raises(GhostscriptNotFoundError):
        asyncio.run(_start())
