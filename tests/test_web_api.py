"""Tests for FastAPI web API.

Uses TestClient against an app without lifespan; the pipeline is wired
over a local source tree and its worker is never started, so tests drive
runs with run_until_idle.
"""

from collections.abc import Iterator
from pathlib import Path

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session, sessionmaker

from sitepipe import __version__
from sitepipe.config import get_settings
from sitepipe.db import get_session
from sitepipe.pipeline.models import PipelineRun
from sitepipe.pipeline.service import Pipeline, create_pipeline
from sitepipe.source.checkout import LocalTreeSource
from web.routers import config, health, hooks, published, runs


def create_test_app() -> FastAPI:
    """Create a minimal FastAPI app for testing without lifespan."""
    application = FastAPI(title="sitepipe API", version=__version__)

    application.include_router(health.router, tags=["health"])
    application.include_router(config.router, prefix="/config", tags=["config"])
    application.include_router(runs.router, prefix="/runs", tags=["runs"])
    application.include_router(hooks.router, prefix="/hooks", tags=["hooks"])
    application.include_router(
        published.router, prefix="/published", tags=["published"]
    )

    return application


@pytest.fixture
def app(
    site_env: Path,
    session_factory: sessionmaker[Session],
    site_tree: Path,
) -> FastAPI:
    """Test app with a wired, idle pipeline."""
    settings = get_settings()
    application = create_test_app()
    application.state.settings = settings
    application.state.session_factory = session_factory
    application.state.pipeline = create_pipeline(
        settings, session_factory, source=LocalTreeSource(site_tree)
    )
    application.state.configuration_error = None
    return application


@pytest.fixture
def client(app: FastAPI) -> Iterator[TestClient]:
    """Client for the test app."""
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def pipeline(app: FastAPI) -> Pipeline:
    """The app's pipeline."""
    return app.state.pipeline


def push(revision_id: str, branch: str = "master") -> dict[str, str]:
    """A flat repository update event."""
    return {"revisionId": revision_id, "branch": branch, "eventKind": "updated"}


class TestHealthEndpoints:
    """Test health check endpoints."""

    def test_health(self, client: TestClient) -> None:
        """Health reports the pipeline state."""
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["version"] == __version__
        assert data["pipeline"] == "idle"

    def test_root(self, client: TestClient) -> None:
        """Root returns name and version."""
        response = client.get("/")
        assert response.status_code == 200
        assert response.json() == {"name": "sitepipe API", "version": __version__}

    def test_degraded_without_pipeline(self, app: FastAPI, client: TestClient) -> None:
        """A rejected configuration degrades health and disables the pipeline."""
        app.state.pipeline = None
        app.state.configuration_error = "domain_name is required"

        health_response = client.get("/health")
        assert health_response.json()["status"] == "degraded"
        assert health_response.json()["error"] == "domain_name is required"

        response = client.get("/runs/state")
        assert response.status_code == 503
        assert response.json()["detail"]["code"] == "configuration_error"


class TestConfigEndpoints:
    """Test configuration endpoints."""

    def test_get_config(self, client: TestClient, site_env: Path) -> None:
        """Effective settings are returned."""
        response = client.get("/config")
        assert response.status_code == 200
        data = response.json()
        assert data["tracked_branch"] == "master"
        assert data["publish_dir"] == str(site_env / "www")

    def test_get_site(self, client: TestClient) -> None:
        """The validated site includes its hosts."""
        response = client.get("/config/site")
        assert response.status_code == 200
        data = response.json()
        assert data["canonical_host"] == "www.example.com"
        assert data["alias_host"] == "example.com"

    def test_get_site_invalid(
        self, client: TestClient, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """An invalid site configuration is reported as 422."""
        monkeypatch.setenv("SITEPIPE_CERTIFICATE_ARN", "not-an-arn")
        response = client.get("/config/site")
        assert response.status_code == 422
        assert "code" in response.json()["detail"]


class TestHookEndpoints:
    """Test the repository webhook."""

    def test_accepts_push(self, client: TestClient, pipeline: Pipeline) -> None:
        """A qualifying event queues the revision."""
        response = client.post("/hooks/repository", json=push("abc123"))

        assert response.status_code == 202
        data = response.json()
        assert data["accepted"] is True
        assert data["duplicate"] is False
        assert data["revision_id"] == "abc123"
        assert data["state"] == "queued"
        assert pipeline.orchestrator.queued_revision.revision_id == "abc123"

    def test_state_change_shape(self, client: TestClient) -> None:
        """Repository state-change events are understood."""
        event = {
            "detail": {
                "event": "referenceUpdated",
                "referenceType": "branch",
                "referenceName": "master",
                "commitId": "def456",
            }
        }
        response = client.post("/hooks/repository", json=event)
        assert response.status_code == 202
        assert response.json()["revision_id"] == "def456"

    def test_duplicate(self, client: TestClient) -> None:
        """Redelivered revisions are acknowledged without a new run."""
        client.post("/hooks/repository", json=push("abc123"))
        response = client.post("/hooks/repository", json=push("abc123"))

        assert response.status_code == 202
        assert response.json()["accepted"] is False
        assert response.json()["duplicate"] is True

    @pytest.mark.parametrize(
        "event",
        [
            push("abc123", branch="develop"),
            {"branch": "master", "eventKind": "updated"},
            {"revisionId": "abc123", "branch": "master", "eventKind": "deleted"},
        ],
    )
    def test_invalid_trigger(self, client: TestClient, event: dict) -> None:
        """Events that do not qualify are rejected."""
        response = client.post("/hooks/repository", json=event)
        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "invalid_trigger"

    def test_token_required(
        self, client: TestClient, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """With a webhook token configured, requests must present it."""
        monkeypatch.setenv("SITEPIPE_WEBHOOK_TOKEN", "s3cret")

        denied = client.post("/hooks/repository", json=push("abc123"))
        allowed = client.post(
            "/hooks/repository",
            json=push("abc123"),
            headers={"X-Sitepipe-Token": "s3cret"},
        )

        assert denied.status_code == 401
        assert denied.json()["detail"]["code"] == "invalid_token"
        assert allowed.status_code == 202


class TestRunEndpoints:
    """Test run endpoints."""

    def test_list_empty(self, client: TestClient) -> None:
        """No runs yet."""
        response = client.get("/runs")
        assert response.status_code == 200
        assert response.json() == []

    def test_list_invalid_status(self, client: TestClient) -> None:
        """Unknown status filters are rejected."""
        response = client.get("/runs", params={"status": "exploded"})
        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "invalid_status"

    def test_state(self, client: TestClient) -> None:
        """The orchestrator starts idle with an empty slot."""
        response = client.get("/runs/state")
        assert response.status_code == 200
        assert response.json() == {
            "state": "idle",
            "active_run_id": None,
            "queued_revision": None,
        }

    def test_get_missing(self, client: TestClient) -> None:
        """Unknown runs are 404."""
        response = client.get("/runs/99")
        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "run_not_found"

    def test_run_lifecycle(self, client: TestClient, pipeline: Pipeline) -> None:
        """A webhook run shows up in the history and the published set."""
        client.post("/hooks/repository", json=push("abc123"))
        [run] = pipeline.orchestrator.run_until_idle()

        listed = client.get("/runs", params={"status": "succeeded"}).json()
        assert [r["id"] for r in listed] == [run.id]

        detail = client.get(f"/runs/{run.id}").json()
        assert detail["status"] == "succeeded"
        assert detail["manifest"] == ["404.html", "assets/app.js", "index.html"]

        state = client.get("/published").json()
        assert state["version"] == 1
        assert state["artifact_id"] == run.artifact_id

        files = client.get("/published/files").json()
        assert [f["path"] for f in files] == [
            "404.html",
            "assets/app.js",
            "index.html",
        ]
        assert all(len(f["sha256"]) == 64 for f in files)

    def test_retry(self, client: TestClient, pipeline: Pipeline) -> None:
        """Retrying a finished run queues a new run of the same revision."""
        client.post("/hooks/repository", json=push("abc123"))
        [run] = pipeline.orchestrator.run_until_idle()

        response = client.post(f"/runs/{run.id}/retry")

        assert response.status_code == 202
        assert response.json() == {
            "retry_of": run.id,
            "revision_id": "abc123",
            "state": "queued",
        }
        [retried] = pipeline.orchestrator.run_until_idle()
        assert retried.retry_of == run.id
        assert retried.id != run.id

    def test_retry_missing(self, client: TestClient) -> None:
        """Retrying an unknown run is 404."""
        response = client.post("/runs/99/retry")
        assert response.status_code == 404

    def test_retry_active(
        self, client: TestClient, session_factory: sessionmaker[Session]
    ) -> None:
        """Runs that have not finished cannot be retried."""
        with get_session(session_factory) as session:
            run = PipelineRun(revision_id="abc123", branch="master")
            session.add(run)
            session.flush()
            run.mark_building()
            run_id = run.id

        response = client.post(f"/runs/{run_id}/retry")

        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "run_not_retryable"


class TestPublishedEndpoints:
    """Test published set endpoints."""

    def test_empty(self, client: TestClient) -> None:
        """Nothing is published before the first run."""
        response = client.get("/published")
        assert response.status_code == 200
        assert response.json() == {
            "version": 0,
            "artifact_id": None,
            "manifest": [],
            "published_at": None,
        }
        assert client.get("/published/files").json() == []
