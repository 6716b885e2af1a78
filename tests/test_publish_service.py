"""Tests for the publish stage."""

import threading
import time
from pathlib import Path

import pytest

from sitepipe.builds.artifacts import BuildArtifact, create_artifact
from sitepipe.publish.service import (
    PublishError,
    PublishStage,
    plan_publish,
    publish_lock,
)
from sitepipe.publish.target import LocalDirectoryTarget, PublishedState
from sitepipe.store import LocalArtifactStore


def make_artifact(tmp_path: Path, name: str, files: dict[str, str]) -> BuildArtifact:
    """Create and store an artifact with the given files."""
    out = tmp_path / "builds" / name
    for rel, content in files.items():
        path = out / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
    return LocalArtifactStore(tmp_path / "artifacts").put(create_artifact(out))


class RecordingTarget(LocalDirectoryTarget):
    """Target that records operations and the live set at each delete."""

    def __init__(self, root: Path) -> None:
        super().__init__(root)
        self.operations: list[tuple[str, str]] = []
        self.live_at_delete: list[set[str]] = []

    def put_file(self, path: str, data: bytes) -> None:
        self.operations.append(("put", path))
        super().put_file(path, data)

    def delete_file(self, path: str) -> None:
        self.live_at_delete.append(set(self.list_current()))
        self.operations.append(("delete", path))
        super().delete_file(path)


class FlakyTarget(LocalDirectoryTarget):
    """Target whose uploads fail a fixed number of times."""

    def __init__(self, root: Path, failures: int) -> None:
        super().__init__(root)
        self.failures = failures
        self.attempts = 0

    def put_file(self, path: str, data: bytes) -> None:
        self.attempts += 1
        if self.attempts <= self.failures:
            raise ConnectionResetError("origin dropped the connection")
        super().put_file(path, data)


class RacingTarget(LocalDirectoryTarget):
    """Target where another publisher commits during this publish."""

    def commit_state(
        self, expected_version: int, artifact_id: str, manifest: list[str]
    ) -> PublishedState:
        super().commit_state(expected_version, "sha256:other", [])
        return super().commit_state(expected_version, artifact_id, manifest)


def make_stage(target: LocalDirectoryTarget, tmp_path: Path, **kwargs) -> PublishStage:
    """Publish stage with no real sleeping."""
    delays: list[float] = []
    options = {"max_attempts": 3, "backoff": 0.5, "sleep": delays.append}
    options.update(kwargs)
    stage = PublishStage(target, lock_dir=tmp_path / "locks", **options)
    stage.delays = delays  # type: ignore[attr-defined]
    return stage


OLD_SITE = {
    "index.html": "old home",
    "about.html": "about",
    "assets/app.js": "js",
}
NEW_SITE = {
    "index.html": "new home",
    "404.html": "missing",
    "assets/app.js": "js",
}


class TestPlanPublish:
    """Test plan_publish function."""

    def test_plan(self) -> None:
        """Changed and new files upload; absent files delete."""
        uploads, deletes = plan_publish(
            {"a": "1", "b": "2", "c": "3"},
            {"a": "1", "b": "9", "d": "4"},
        )
        assert uploads == ["b", "d"]
        assert deletes == ["c"]

    def test_identical(self) -> None:
        """Identical sets need no operations."""
        assert plan_publish({"a": "1"}, {"a": "1"}) == ([], [])


class TestPublishLock:
    """Test publish_lock context manager."""

    def test_second_holder_times_out(self, tmp_path: Path) -> None:
        """A held lock blocks other holders until the timeout."""
        with publish_lock(tmp_path, "site"):
            with pytest.raises(TimeoutError):
                with publish_lock(tmp_path, "site", timeout=0.2):
                    pass

    def test_released_after_use(self, tmp_path: Path) -> None:
        """The lock can be taken again after release."""
        with publish_lock(tmp_path, "site", timeout=0.2):
            pass
        with publish_lock(tmp_path, "site", timeout=0.2):
            pass


class TestPublishStage:
    """Test PublishStage class."""

    def test_first_publish(self, tmp_path: Path) -> None:
        """Publishing to an empty target uploads everything."""
        target = LocalDirectoryTarget(tmp_path / "www")
        artifact = make_artifact(tmp_path, "new", NEW_SITE)

        counts = make_stage(target, tmp_path).publish(artifact)

        assert counts == {"uploaded": 3, "deleted": 0, "unchanged": 0}
        assert target.list_current() == artifact.checksums()
        state = target.read_state()
        assert state.version == 1
        assert state.artifact_id == artifact.artifact_id
        assert state.manifest == ["404.html", "assets/app.js", "index.html"]

    def test_converges_to_manifest(self, tmp_path: Path) -> None:
        """After publish the live set equals the new manifest exactly."""
        target = LocalDirectoryTarget(tmp_path / "www")
        stage = make_stage(target, tmp_path)
        stage.publish(make_artifact(tmp_path, "old", OLD_SITE))
        new = make_artifact(tmp_path, "new", NEW_SITE)

        counts = stage.publish(new)

        assert counts == {"uploaded": 2, "deleted": 1, "unchanged": 1}
        assert sorted(target.list_current()) == new.manifest
        assert target.read_file("index.html") == b"new home"
        assert target.read_file("about.html") is None
        assert target.read_state().version == 2

    def test_live_set_is_superset_during_publish(self, tmp_path: Path) -> None:
        """No file of the new manifest is missing once deletes begin."""
        target = RecordingTarget(tmp_path / "www")
        stage = make_stage(target, tmp_path)
        stage.publish(make_artifact(tmp_path, "old", OLD_SITE))
        target.operations.clear()
        new = make_artifact(tmp_path, "new", NEW_SITE)

        stage.publish(new)

        kinds = [kind for kind, _ in target.operations]
        assert kinds == sorted(kinds, key=lambda k: k == "delete")
        assert target.live_at_delete
        for live in target.live_at_delete:
            assert set(new.manifest) <= live

    def test_republish_is_noop(self, tmp_path: Path) -> None:
        """Publishing the live artifact again changes no files."""
        target = RecordingTarget(tmp_path / "www")
        stage = make_stage(target, tmp_path)
        artifact = make_artifact(tmp_path, "new", NEW_SITE)
        stage.publish(artifact)
        target.operations.clear()

        counts = stage.publish(artifact)

        assert counts == {"uploaded": 0, "deleted": 0, "unchanged": 3}
        assert target.operations == []
        assert target.read_state().version == 2

    def test_retries_transient_failures(self, tmp_path: Path) -> None:
        """Failed operations are retried with exponential backoff."""
        target = FlakyTarget(tmp_path / "www", failures=2)
        stage = make_stage(target, tmp_path, max_workers=1)
        artifact = make_artifact(tmp_path, "single", {"index.html": "home"})

        counts = stage.publish(artifact)

        assert counts["uploaded"] == 1
        assert target.attempts == 3
        assert stage.delays == [0.5, 1.0]
        assert target.read_file("index.html") == b"home"

    def test_exhausted_retries(self, tmp_path: Path) -> None:
        """Exhausted retries fail the publish and leave state untouched."""
        target = LocalDirectoryTarget(tmp_path / "www")
        stage = make_stage(target, tmp_path)
        old = make_artifact(tmp_path, "old", OLD_SITE)
        stage.publish(old)

        broken = FlakyTarget(target.root, failures=100)
        broken.state_path = target.state_path
        with pytest.raises(PublishError) as exc_info:
            make_stage(broken, tmp_path).publish(
                make_artifact(tmp_path, "new", NEW_SITE)
            )

        assert exc_info.value.code == "publish_failed"
        assert "after 3 attempts" in str(exc_info.value)
        assert target.read_state().artifact_id == old.artifact_id
        assert target.read_file("about.html") == b"about"

    def test_operation_timeout(self, tmp_path: Path) -> None:
        """A hanging operation is abandoned and retried."""

        class SlowOnceTarget(LocalDirectoryTarget):
            calls = 0

            def put_file(self, path: str, data: bytes) -> None:
                SlowOnceTarget.calls += 1
                if SlowOnceTarget.calls == 1:
                    time.sleep(0.5)
                super().put_file(path, data)

        target = SlowOnceTarget(tmp_path / "www")
        stage = make_stage(target, tmp_path, op_timeout=0.1)

        stage.publish(make_artifact(tmp_path, "single", {"index.html": "home"}))

        assert SlowOnceTarget.calls == 2
        assert stage.delays == [0.5]

    def test_concurrent_publish_conflict(self, tmp_path: Path) -> None:
        """A concurrent commit is reported as publish_conflict."""
        target = RacingTarget(tmp_path / "www")

        with pytest.raises(PublishError) as exc_info:
            make_stage(target, tmp_path).publish(
                make_artifact(tmp_path, "new", NEW_SITE)
            )

        assert exc_info.value.code == "publish_conflict"
        assert target.read_state().artifact_id == "sha256:other"

    def test_run_returns_outcome(self, tmp_path: Path) -> None:
        """run() wraps publish results in a StageOutcome."""
        target = LocalDirectoryTarget(tmp_path / "www")
        artifact = make_artifact(tmp_path, "new", NEW_SITE)

        outcome = make_stage(target, tmp_path).run(1, artifact)

        assert outcome.success is True
        assert outcome.artifact is artifact
        assert outcome.details["uploaded"] == 3

    def test_run_reports_failure(self, tmp_path: Path) -> None:
        """run() turns PublishError into a failed outcome."""
        target = FlakyTarget(tmp_path / "www", failures=100)

        outcome = make_stage(target, tmp_path, max_attempts=1).run(
            1, make_artifact(tmp_path, "new", NEW_SITE)
        )

        assert outcome.success is False
        assert outcome.error_type == "publish_failure"
        assert outcome.error_code == "publish_failed"

    def test_file_becomes_directory(self, tmp_path: Path) -> None:
        """A file replaced by a directory of the same name publishes cleanly."""
        target = LocalDirectoryTarget(tmp_path / "www")
        stage = make_stage(target, tmp_path)
        stage.publish(make_artifact(tmp_path, "old", {"index.html": "h", "docs": "d"}))
        new = make_artifact(
            tmp_path, "new", {"index.html": "h", "docs/index.html": "docs"}
        )

        counts = stage.publish(new)

        assert counts == {"uploaded": 1, "deleted": 1, "unchanged": 1}
        assert target.list_current() == new.checksums()
        assert target.read_state().artifact_id == new.artifact_id

    def test_directory_becomes_file(self, tmp_path: Path) -> None:
        """A directory replaced by a file of the same name publishes cleanly."""
        target = LocalDirectoryTarget(tmp_path / "www")
        stage = make_stage(target, tmp_path)
        stage.publish(
            make_artifact(
                tmp_path,
                "old",
                {"index.html": "h", "docs/index.html": "a", "docs/b.html": "b"},
            )
        )
        new = make_artifact(tmp_path, "new", {"index.html": "h", "docs": "d"})

        outcome = stage.run(2, new)

        assert outcome.success is True
        assert target.list_current() == new.checksums()
        assert target.read_state().artifact_id == new.artifact_id

    def test_hung_operation_does_not_hold_publish(self, tmp_path: Path) -> None:
        """A put that never returns fails the publish within its timeouts."""
        release = threading.Event()

        class HangingTarget(LocalDirectoryTarget):
            def put_file(self, path: str, data: bytes) -> None:
                release.wait(5)
                super().put_file(path, data)

        target = HangingTarget(tmp_path / "www")
        stage = make_stage(target, tmp_path, op_timeout=0.1, max_attempts=2)
        artifact = make_artifact(tmp_path, "single", {"index.html": "home"})

        started = time.monotonic()
        try:
            outcome = stage.run(1, artifact)
            elapsed = time.monotonic() - started
        finally:
            release.set()

        assert outcome.success is False
        assert outcome.error_code == "publish_failed"
        assert "timed out" in outcome.error_message
        assert elapsed < 1.5
