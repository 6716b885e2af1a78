"""Tests for the branch head poller."""

import threading

import httpx
import pytest
import respx

from sitepipe.source.poller import BranchPoller, PollError, extract_head

BRANCH_URL = "https://git.example.com/api/repos/acme/site/branches/master"


def branch_payload(sha: str) -> dict:
    """A branch API response body."""
    return {"name": "master", "commit": {"sha": sha}}


@pytest.fixture
def events() -> list[dict]:
    """Events emitted by the poller."""
    return []


@pytest.fixture
def client():
    """HTTPX client for the poller."""
    with httpx.Client() as c:
        yield c


class TestExtractHead:
    """Test extract_head function."""

    def test_sha(self) -> None:
        """GitHub-style payloads carry commit.sha."""
        assert extract_head(branch_payload("abc123")) == "abc123"

    def test_id(self) -> None:
        """Gitea-style payloads carry commit.id."""
        assert extract_head({"commit": {"id": "def456"}}) == "def456"

    def test_missing_commit(self) -> None:
        """Payloads without a commit raise PollError."""
        with pytest.raises(PollError) as exc_info:
            extract_head({"name": "master"})
        assert exc_info.value.code == "invalid_response"


class TestBranchPoller:
    """Test BranchPoller class."""

    @respx.mock
    def test_first_poll_emits_created(
        self, client: httpx.Client, events: list[dict]
    ) -> None:
        """The first head seen is emitted as a created event."""
        respx.get(BRANCH_URL).mock(
            return_value=httpx.Response(200, json=branch_payload("abc123"))
        )
        poller = BranchPoller(client, BRANCH_URL, "master", events.append)

        event = poller.poll_once()

        assert event is not None
        assert event["revisionId"] == "abc123"
        assert event["eventKind"] == "created"
        assert event["branch"] == "master"
        assert events == [event]

    @respx.mock
    def test_unchanged_head_emits_nothing(
        self, client: httpx.Client, events: list[dict]
    ) -> None:
        """Polling the same head twice emits one event."""
        respx.get(BRANCH_URL).mock(
            return_value=httpx.Response(200, json=branch_payload("abc123"))
        )
        poller = BranchPoller(client, BRANCH_URL, "master", events.append)

        poller.poll_once()
        assert poller.poll_once() is None
        assert len(events) == 1

    @respx.mock
    def test_moved_head_emits_updated(
        self, client: httpx.Client, events: list[dict]
    ) -> None:
        """A moved head is emitted as an updated event."""
        respx.get(BRANCH_URL).mock(
            side_effect=[
                httpx.Response(200, json=branch_payload("abc123")),
                httpx.Response(200, json=branch_payload("def456")),
            ]
        )
        poller = BranchPoller(client, BRANCH_URL, "master", events.append)

        poller.poll_once()
        event = poller.poll_once()

        assert event is not None
        assert event["revisionId"] == "def456"
        assert event["eventKind"] == "updated"
        assert poller.last_head == "def456"

    @respx.mock
    def test_sends_headers(self, client: httpx.Client, events: list[dict]) -> None:
        """Configured headers are sent with every request."""
        route = respx.get(BRANCH_URL).mock(
            return_value=httpx.Response(200, json=branch_payload("abc123"))
        )
        poller = BranchPoller(
            client,
            BRANCH_URL,
            "master",
            events.append,
            headers={"Authorization": "Bearer secret"},
        )

        poller.poll_once()

        assert route.calls.last.request.headers["Authorization"] == "Bearer secret"

    @respx.mock
    def test_http_error(self, client: httpx.Client, events: list[dict]) -> None:
        """HTTP errors raise PollError with http_error code."""
        respx.get(BRANCH_URL).mock(return_value=httpx.Response(404))
        poller = BranchPoller(client, BRANCH_URL, "master", events.append)

        with pytest.raises(PollError) as exc_info:
            poller.poll_once()

        assert exc_info.value.code == "http_error"
        assert events == []

    @respx.mock
    def test_timeout(self, client: httpx.Client, events: list[dict]) -> None:
        """Timeouts raise PollError with timeout code."""
        respx.get(BRANCH_URL).mock(side_effect=httpx.ReadTimeout("slow"))
        poller = BranchPoller(client, BRANCH_URL, "master", events.append)

        with pytest.raises(PollError) as exc_info:
            poller.poll_once()

        assert exc_info.value.code == "timeout"

    @respx.mock
    def test_network_error(self, client: httpx.Client, events: list[dict]) -> None:
        """Connection failures raise PollError with network_error code."""
        respx.get(BRANCH_URL).mock(side_effect=httpx.ConnectError("refused"))
        poller = BranchPoller(client, BRANCH_URL, "master", events.append)

        with pytest.raises(PollError) as exc_info:
            poller.poll_once()

        assert exc_info.value.code == "network_error"

    @respx.mock
    def test_invalid_json(self, client: httpx.Client, events: list[dict]) -> None:
        """Non-JSON bodies raise PollError with invalid_response code."""
        respx.get(BRANCH_URL).mock(return_value=httpx.Response(200, text="<html>"))
        poller = BranchPoller(client, BRANCH_URL, "master", events.append)

        with pytest.raises(PollError) as exc_info:
            poller.poll_once()

        assert exc_info.value.code == "invalid_response"

    @respx.mock
    def test_run_survives_failures(
        self, client: httpx.Client, events: list[dict]
    ) -> None:
        """The polling loop logs failed polls and keeps going."""
        stop = threading.Event()
        responses = iter(
            [
                httpx.Response(500),
                httpx.Response(200, json=branch_payload("abc123")),
            ]
        )

        def respond(request: httpx.Request) -> httpx.Response:
            try:
                return next(responses)
            except StopIteration:
                stop.set()
                return httpx.Response(200, json=branch_payload("abc123"))

        respx.get(BRANCH_URL).mock(side_effect=respond)
        poller = BranchPoller(client, BRANCH_URL, "master", events.append)

        poller.run(interval=0.01, stop=stop)

        assert [e["revisionId"] for e in events] == ["abc123"]
