"""Tests for shared type definitions."""

from sitepipe.types import (
    ErrorKind,
    EventKind,
    PipelineState,
    RunStatus,
    StageOutcome,
)


class TestRunStatus:
    """Test RunStatus enum."""

    def test_values(self) -> None:
        """RunStatus should have the expected values."""
        assert RunStatus.PENDING.value == "pending"
        assert RunStatus.BUILDING.value == "building"
        assert RunStatus.PUBLISHING.value == "publishing"
        assert RunStatus.SUCCEEDED.value == "succeeded"
        assert RunStatus.FAILED.value == "failed"

    def test_is_terminal(self) -> None:
        """Only succeeded and failed are terminal."""
        assert RunStatus.SUCCEEDED.is_terminal
        assert RunStatus.FAILED.is_terminal
        assert not RunStatus.PENDING.is_terminal
        assert not RunStatus.BUILDING.is_terminal
        assert not RunStatus.PUBLISHING.is_terminal

    def test_is_string_enum(self) -> None:
        """RunStatus should compare equal to its string value."""
        assert RunStatus.SUCCEEDED == "succeeded"


class TestPipelineState:
    """Test PipelineState enum."""

    def test_values(self) -> None:
        """PipelineState should cover the orchestrator states."""
        assert {s.value for s in PipelineState} == {
            "idle",
            "queued",
            "building",
            "publishing",
            "succeeded",
            "failed",
        }


class TestEventKind:
    """Test EventKind enum."""

    def test_values(self) -> None:
        """EventKind should have created, updated and deleted."""
        assert [k.value for k in EventKind] == ["created", "updated", "deleted"]


class TestStageOutcome:
    """Test StageOutcome constructors."""

    def test_ok(self) -> None:
        """ok() should carry the artifact and details."""
        outcome = StageOutcome.ok("artifact", uploaded=3)
        assert outcome.success is True
        assert outcome.artifact == "artifact"
        assert outcome.details == {"uploaded": 3}
        assert outcome.error_type is None

    def test_failed(self) -> None:
        """failed() should carry the error kind, code and message."""
        outcome = StageOutcome.failed(
            ErrorKind.BUILD_FAILURE, "boom", code="build_failed", log_path="/x.log"
        )
        assert outcome.success is False
        assert outcome.error_type == "build_failure"
        assert outcome.error_code == "build_failed"
        assert outcome.error_message == "boom"
        assert outcome.log_path == "/x.log"
