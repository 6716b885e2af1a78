"""Tests for the PipelineRun model and run queries."""

from datetime import datetime, timezone

import pytest
from sqlalchemy.orm import Session, sessionmaker

from sitepipe.db import get_session
from sitepipe.pipeline.models import PipelineRun
from sitepipe.pipeline.service import (
    RunNotFoundError,
    get_run,
    latest_succeeded_run,
    list_runs,
    run_to_dict,
)
from sitepipe.types import RunStatus


def add_run(
    session_factory: sessionmaker[Session],
    revision_id: str,
    status: RunStatus = RunStatus.PENDING,
) -> int:
    """Insert a run with the given status and return its ID."""
    with get_session(session_factory) as session:
        run = PipelineRun(revision_id=revision_id, branch="master", status=status.value)
        session.add(run)
        session.flush()
        return run.id


class TestPipelineRun:
    """Test PipelineRun transitions."""

    def test_defaults(self, session_factory: sessionmaker[Session]) -> None:
        """New runs are pending with a request timestamp."""
        run_id = add_run(session_factory, "abc123")
        with get_session(session_factory) as session:
            run = session.get(PipelineRun, run_id)
            assert run.status == "pending"
            assert run.requested_at is not None
            assert run.is_terminal is False

    def test_new_run_is_pending(self) -> None:
        """Unsaved runs start pending and can start building."""
        run = PipelineRun(revision_id="abc123", branch="master")
        assert run.status == "pending"
        assert run.revision.timestamp == run.requested_at
        run.mark_building()
        assert run.status == "building"

    def test_happy_path(self) -> None:
        """building -> publishing -> succeeded."""
        run = PipelineRun(revision_id="abc123", branch="master", status="pending")
        run.mark_building()
        assert run.status == "building"
        assert run.stage == "build"
        assert run.started_at is not None

        run.mark_publishing("sha256:abc", ["index.html"])
        assert run.status == "publishing"
        assert run.stage == "publish"
        assert run.artifact_id == "sha256:abc"
        assert run.manifest == ["index.html"]

        run.mark_succeeded()
        assert run.is_succeeded()
        assert run.is_terminal
        assert run.finished_at is not None

    def test_failed(self) -> None:
        """mark_failed records the error."""
        run = PipelineRun(revision_id="abc123", branch="master", status="building")
        run.mark_failed("build_failure", "exit 2", "build_failed")

        assert run.status == "failed"
        assert run.error_type == "build_failure"
        assert run.error_message == "exit 2"
        assert run.error_code == "build_failed"

    @pytest.mark.parametrize("status", ["succeeded", "failed"])
    def test_terminal_runs_are_frozen(self, status: str) -> None:
        """Finished runs reject further transitions."""
        run = PipelineRun(revision_id="abc123", branch="master", status=status)
        with pytest.raises(ValueError, match="already"):
            run.mark_building()
        with pytest.raises(ValueError):
            run.mark_failed("build_failure", "late")

    def test_revision(self) -> None:
        """The revision property rebuilds the trigger."""
        ts = datetime(2024, 1, 1, tzinfo=timezone.utc)
        run = PipelineRun(
            revision_id="abc123", branch="master", revision_timestamp=ts
        )
        revision = run.revision
        assert revision.revision_id == "abc123"
        assert revision.branch == "master"
        assert revision.timestamp == ts


class TestRunQueries:
    """Test run query helpers."""

    def test_get_run_missing(self, session_factory: sessionmaker[Session]) -> None:
        """Unknown runs raise RunNotFoundError."""
        with get_session(session_factory) as session:
            with pytest.raises(RunNotFoundError) as exc_info:
                get_run(session, 999)
        assert exc_info.value.code == "run_not_found"

    def test_list_runs_filters(self, session_factory: sessionmaker[Session]) -> None:
        """Runs are listed newest first and filterable."""
        first = add_run(session_factory, "r1", RunStatus.SUCCEEDED)
        second = add_run(session_factory, "r2", RunStatus.FAILED)
        third = add_run(session_factory, "r2", RunStatus.SUCCEEDED)

        with get_session(session_factory) as session:
            assert [r.id for r in list_runs(session)] == [third, second, first]
            assert [r.id for r in list_runs(session, revision_id="r2")] == [
                third,
                second,
            ]
            assert [
                r.id for r in list_runs(session, status=RunStatus.FAILED)
            ] == [second]
            assert [r.id for r in list_runs(session, limit=1)] == [third]
            assert latest_succeeded_run(session).id == third

    def test_latest_succeeded_none(
        self, session_factory: sessionmaker[Session]
    ) -> None:
        """No successful run yields None."""
        add_run(session_factory, "r1", RunStatus.FAILED)
        with get_session(session_factory) as session:
            assert latest_succeeded_run(session) is None

    def test_run_to_dict(self, session_factory: sessionmaker[Session]) -> None:
        """run_to_dict exposes stable keys."""
        run_id = add_run(session_factory, "abc123")
        with get_session(session_factory) as session:
            data = run_to_dict(get_run(session, run_id))

        assert data["id"] == run_id
        assert data["revision_id"] == "abc123"
        assert data["status"] == "pending"
        assert data["finished_at"] is None
        assert set(data) >= {"artifact_id", "manifest", "error_code", "retry_of"}
