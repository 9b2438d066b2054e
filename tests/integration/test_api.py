"""Integration tests for the knowledge-base API using TestClient.

The app is built with real SQLite stores in a temp directory and a scripted
extraction engine in place of the LLM.
"""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest
from conftest import ORG, OTHER_ORG, ScriptedEngine, silver_plan_script
from fastapi.testclient import TestClient

from trainkb.config.loader import IngestionConfig
from trainkb.config.settings import Settings
from trainkb.main import build_components, create_app

KB = "/api/v1/knowledge-base"

# Four 90-character paragraphs; at 100 characters per chunk each becomes
# one chunk.
_HANDBOOK = "\n\n".join(f"Section {i} ".ljust(90, "x") for i in range(4))


def _headers(organization_id: str = ORG) -> dict[str, str]:
    return {"X-Organization-Id": organization_id}


def _upload(client: TestClient, organization_id: str = ORG, files=None):
    files = files or [("files", ("handbook.txt", _HANDBOOK.encode(), "text/plain"))]
    return client.post(f"{KB}/upload", files=files, headers=_headers(organization_id))


def _components(tmp_path: Path, ingestion: IngestionConfig | None = None, **settings):
    values = {
        "database_path": str(tmp_path / "kb.db"),
        "config_path": str(tmp_path / "config.yaml"),
        "anthropic_api_key": "",
        "openai_api_key": "",
        **settings,
    }
    return build_components(
        Settings(**values),
        ingestion or IngestionConfig(chunk_max_chars=100),
        extraction_engine=ScriptedEngine(silver_plan_script()),
    )


@pytest.fixture
def client(tmp_path: Path) -> Iterator[TestClient]:
    with TestClient(create_app(_components(tmp_path))) as test_client:
        yield test_client


# ─── Full flow ────────────────────────────────────────────────────────────


def test_upload_parse_review_generate(client: TestClient) -> None:
    upload = _upload(client)
    assert upload.status_code == 200
    body = upload.json()
    assert body["status"] == "uploaded"
    assert body["total_chunks"] == 4
    assert body["files"][0]["name"] == "handbook.txt"
    job_id = body["job_id"]

    parse_calls = 0
    while True:
        response = client.post(f"{KB}/{job_id}/parse", headers=_headers())
        assert response.status_code == 200
        parse_calls += 1
        if response.json()["done"]:
            break
    assert parse_calls == 4
    assert response.json()["progress"] == {"parsed_chunks": 4, "total_chunks": 4}

    data = client.get(f"{KB}/{job_id}/data", headers=_headers()).json()
    assert data["status"] == "parsed"
    packages = data["parsed_data"]["packages"]
    assert len(packages) == 1
    assert packages[0]["name"] == "Silver Plan"

    edited = dict(data["parsed_data"])
    objection = {"text": "Too expensive", "recommended_response": "Compare the per-visit cost"}
    edited["packages"] = [{**packages[0], "objections": [objection]}]
    saved = client.put(f"{KB}/{job_id}/data", json={"parsed_data": edited}, headers=_headers())
    assert saved.status_code == 200
    assert saved.json()["status"] == "reviewing"

    generated = client.post(f"{KB}/{job_id}/generate", headers=_headers())
    assert generated.status_code == 200
    summary = generated.json()["summary"]
    assert summary["packages"] == 1
    assert summary["selling_points"] == 3
    assert summary["objections"] == 1
    assert summary["guidelines"] == 1
    assert [entry["step"] for entry in generated.json()["generation_log"]][:2] == [
        "validate",
        "clean",
    ]

    status = client.get(f"{KB}/{job_id}/status", headers=_headers()).json()
    assert status["status"] == "complete"
    assert status["summary"] == summary

    history = client.get(f"{KB}/history", headers=_headers()).json()
    assert history["total"] == 1
    assert history["jobs"][0]["job_id"] == job_id

    deleted = client.delete(f"{KB}/{job_id}", headers=_headers())
    assert deleted.json() == {"job_id": job_id, "deleted": True}
    assert client.get(f"{KB}/{job_id}/status", headers=_headers()).status_code == 404


# ─── Errors ───────────────────────────────────────────────────────────────


def test_missing_organization_header(client: TestClient) -> None:
    response = client.get(f"{KB}/history")
    assert response.status_code == 401


def test_unsupported_file_rejected(client: TestClient) -> None:
    response = _upload(
        client,
        files=[("files", ("virus.exe", b"MZ", "application/x-msdownload"))],
    )
    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "UploadValidationError"
    assert body["context"]["rejections"][0]["file"] == "virus.exe"
    assert client.get(f"{KB}/history", headers=_headers()).json()["total"] == 0


def test_too_many_files_rejected(client: TestClient) -> None:
    files = [("files", (f"f{i}.txt", b"text", "text/plain")) for i in range(4)]
    assert _upload(client, files=files).status_code == 400


def test_oversized_file_rejected_before_job_is_created(tmp_path: Path) -> None:
    components = _components(
        tmp_path, IngestionConfig(chunk_max_chars=100, max_file_size_mb=0.001)
    )
    with TestClient(create_app(components)) as small_client:
        response = _upload(
            small_client,
            files=[
                ("files", ("big.txt", b"x" * 2048, "text/plain")),
                ("files", ("small.txt", b"Silver Plan", "text/plain")),
            ],
        )

        assert response.status_code == 400
        rejections = response.json()["context"]["rejections"]
        assert [r["file"] for r in rejections] == ["big.txt"]
        assert "MB limit" in rejections[0]["reason"]
        assert small_client.get(f"{KB}/history", headers=_headers()).json()["total"] == 0


def test_unknown_job_not_found(client: TestClient) -> None:
    response = client.get(f"{KB}/no-such-job/status", headers=_headers())
    assert response.status_code == 404
    assert response.json()["error"] == "JobNotFoundError"


def test_other_organization_cannot_see_job(client: TestClient) -> None:
    job_id = _upload(client).json()["job_id"]
    response = client.post(f"{KB}/{job_id}/parse", headers=_headers(OTHER_ORG))
    assert response.status_code == 404
    assert client.get(f"{KB}/history", headers=_headers(OTHER_ORG)).json()["total"] == 0


def test_generate_before_parse_conflicts(client: TestClient) -> None:
    job_id = _upload(client).json()["job_id"]
    response = client.post(f"{KB}/{job_id}/generate", headers=_headers())
    assert response.status_code == 409
    assert response.json()["error"] == "InvalidStateError"


def test_review_before_parse_conflicts(client: TestClient) -> None:
    job_id = _upload(client).json()["job_id"]
    response = client.get(f"{KB}/{job_id}/data", headers=_headers())
    assert response.status_code == 409


# ─── Health ───────────────────────────────────────────────────────────────


def test_health_degraded_without_llm(client: TestClient) -> None:
    body = client.get("/api/v1/health").json()
    assert body["status"] == "degraded"
    assert body["providers"]["llm"] is False
    assert body["providers"]["extraction_engine"] == "scripted"


# ─── Wiring ───────────────────────────────────────────────────────────────


def test_components_follow_merged_config(tmp_path: Path) -> None:
    (tmp_path / "config.yaml").write_text(
        "storage:\n  database_path: ignored.db\ningestion:\n  history_limit: 7\n",
        encoding="utf-8",
    )
    settings = Settings(
        database_path=str(tmp_path / "kb.db"),
        config_path=str(tmp_path / "config.yaml"),
        anthropic_api_key="",
        openai_api_key="sk-test",
    )
    components = build_components(settings, extraction_engine=ScriptedEngine())

    assert components["config"]["llm"]["available_providers"] == ["openai"]
    assert components["provider_registry"]["llm_provider"] == "openai"
    assert components["config"]["storage"]["database_path"] == str(tmp_path / "kb.db")
    assert components["ingestion_config"].history_limit == 7
