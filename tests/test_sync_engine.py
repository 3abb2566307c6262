"""Integration tests for SyncEngine against a mocked GitHub API."""
import base64
import json
from dataclasses import replace

import pytest
import responses

from eventmap_sync.errors import (
    AuthenticationError,
    ConfigurationError,
    ConflictError,
    SyncError,
)
from eventmap_sync.sync_engine import LogEntry, SyncEngine, SyncLog, SyncStage, SyncStatus

from conftest import CONTENTS_URL, FIXED_NOW, TOKEN_URL

HTML_URL = "https://github.com/kawaguti/ScrumFestMapViewer/blob/main/all-events.md"
TOKEN_RESPONSE = {"token": "ghs_installation_token", "expires_at": "2024-06-01T04:00:00Z"}


def contents_payload(text, sha="R1"):
    return {
        "type": "file",
        "encoding": "base64",
        "content": base64.b64encode(text.encode("utf-8")).decode("ascii"),
        "sha": sha,
        "html_url": HTML_URL,
    }


def write_payload(sha="R2", commit="C2"):
    return {"content": {"sha": sha, "html_url": HTML_URL}, "commit": {"sha": commit}}


def urls_called():
    return [(call.request.method, call.request.url.split("?")[0]) for call in responses.calls]


@pytest.fixture
def engine(config, clock):
    return SyncEngine(config, clock=clock)


@pytest.fixture
def fest_events(make_event):
    return [
        make_event("Fest A", date="2024-03-01"),
        make_event("Fest B", date="2023-01-01", prefecture="大阪府", is_archived=True),
    ]


class TestNoOp:
    """Test cases for runs that must not write."""

    @responses.activate
    def test_unchanged_sections_never_request_a_credential(self, engine, fest_events):
        current = engine.renderer.render(fest_events)
        responses.add(responses.GET, CONTENTS_URL, json=contents_payload(current))

        result = engine.sync(fest_events)

        assert result.status is SyncStatus.NOOP
        assert result.revision == "R1"
        assert not result.written
        assert urls_called() == [("GET", CONTENTS_URL)]
        assert engine.stage is SyncStage.DONE

    @responses.activate
    def test_description_edit_alone_is_a_noop(self, engine, make_event):
        """Name-based detection: editing an existing event does not write."""
        before = engine.renderer.render([make_event("X", description="foo")])
        responses.add(responses.GET, CONTENTS_URL, json=contents_payload(before))

        result = engine.sync([make_event("X", description="bar")])

        assert result.status is SyncStatus.NOOP
        assert result.changes.unchanged == {"X"}
        assert len(responses.calls) == 1

    @responses.activate
    def test_noop_is_logged(self, engine, fest_events):
        responses.add(responses.GET, CONTENTS_URL, json=contents_payload(engine.renderer.render(fest_events)))

        result = engine.sync(fest_events)

        titles = [entry.title for entry in result.diagnostics]
        assert titles == ["Starting GitHub sync", "No changes to sync"]
        assert all(entry.type == "info" for entry in result.diagnostics)
        assert result.diagnostics[-1].timestamp == FIXED_NOW


class TestWrites:
    """Test cases for runs that write."""

    @responses.activate
    def test_update_when_an_event_is_added(self, engine, make_event):
        responses.add(
            responses.GET, CONTENTS_URL,
            json=contents_payload(engine.renderer.render([make_event("Fest A")])),
        )
        responses.add(responses.POST, TOKEN_URL, json=TOKEN_RESPONSE, status=201)
        responses.add(responses.PUT, CONTENTS_URL, json=write_payload(), status=200)

        events = [make_event("Fest A"), make_event("Fest C", date="2024-05-01")]
        result = engine.sync(events)

        assert result.status is SyncStatus.UPDATED
        assert result.written
        assert result.revision == "R2"
        assert result.commit_sha == "C2"
        assert result.url == HTML_URL
        assert result.changes.added == {"Fest C"}
        assert urls_called() == [("GET", CONTENTS_URL), ("POST", TOKEN_URL), ("PUT", CONTENTS_URL)]

        put = responses.calls[2].request
        body = json.loads(put.body)
        assert body["sha"] == "R1"
        assert body["message"] == "docs(events): add 1 event\n\nAdded: Fest C"
        assert base64.b64decode(body["content"]).decode("utf-8") == engine.renderer.render(events)
        assert put.headers["Authorization"] == "Bearer ghs_installation_token"

    @responses.activate
    def test_missing_document_is_created(self, engine, fest_events):
        responses.add(responses.GET, CONTENTS_URL, json={"message": "Not Found"}, status=404)
        responses.add(responses.POST, TOKEN_URL, json=TOKEN_RESPONSE, status=201)
        responses.add(responses.PUT, CONTENTS_URL, json=write_payload(sha="R1", commit="C1"), status=201)

        result = engine.sync(fest_events)

        assert result.status is SyncStatus.CREATED
        body = json.loads(responses.calls[2].request.body)
        assert "sha" not in body
        assert body["message"] == "docs(events): initial sync of 1 event"

    @responses.activate
    def test_missing_document_is_created_even_without_events(self, engine):
        responses.add(responses.GET, CONTENTS_URL, status=404)
        responses.add(responses.POST, TOKEN_URL, json=TOKEN_RESPONSE, status=201)
        responses.add(responses.PUT, CONTENTS_URL, json=write_payload(sha="R1"), status=201)

        assert engine.sync([]).status is SyncStatus.CREATED

    @responses.activate
    def test_fixed_commit_message(self, config, clock, make_event):
        engine = SyncEngine(replace(config, commit_message="Update events list via ScrumFestMap"), clock=clock)
        responses.add(responses.GET, CONTENTS_URL, status=404)
        responses.add(responses.POST, TOKEN_URL, json=TOKEN_RESPONSE, status=201)
        responses.add(responses.PUT, CONTENTS_URL, json=write_payload(), status=201)

        engine.sync([make_event("Fest A")])

        assert json.loads(responses.calls[2].request.body)["message"] == "Update events list via ScrumFestMap"

    @responses.activate
    def test_force_sync_writes_content_edits(self, config, clock, make_event):
        engine = SyncEngine(replace(config, force_sync=True), clock=clock)
        before = engine.renderer.render([make_event("X", description="foo")])
        responses.add(responses.GET, CONTENTS_URL, json=contents_payload(before))
        responses.add(responses.POST, TOKEN_URL, json=TOKEN_RESPONSE, status=201)
        responses.add(responses.PUT, CONTENTS_URL, json=write_payload(), status=200)

        result = engine.sync([make_event("X", description="bar")])

        assert result.status is SyncStatus.UPDATED
        assert json.loads(responses.calls[2].request.body)["message"] == "docs(events): sync latest changes"

    @responses.activate
    def test_force_sync_skips_identical_text(self, config, clock, fest_events):
        engine = SyncEngine(replace(config, force_sync=True), clock=clock)
        responses.add(responses.GET, CONTENTS_URL, json=contents_payload(engine.renderer.render(fest_events)))

        assert engine.sync(fest_events).status is SyncStatus.NOOP

    @responses.activate
    def test_dry_run_neither_authenticates_nor_writes(self, config, clock, fest_events):
        engine = SyncEngine(replace(config, dry_run=True), clock=clock)
        responses.add(responses.GET, CONTENTS_URL, status=404)

        result = engine.sync(fest_events)

        assert result.status is SyncStatus.CREATED
        assert result.dry_run
        assert not result.written
        assert urls_called() == [("GET", CONTENTS_URL)]

    @responses.activate
    def test_authenticated_fetch(self, config, clock, fest_events):
        engine = SyncEngine(replace(config, authenticated_fetch=True), clock=clock)
        responses.add(responses.POST, TOKEN_URL, json=TOKEN_RESPONSE, status=201)
        responses.add(responses.GET, CONTENTS_URL, status=404)
        responses.add(responses.PUT, CONTENTS_URL, json=write_payload(), status=201)

        engine.sync(fest_events)

        assert urls_called() == [("POST", TOKEN_URL), ("GET", CONTENTS_URL), ("PUT", CONTENTS_URL)]
        assert responses.calls[1].request.headers["Authorization"] == "Bearer ghs_installation_token"


class TestFailures:
    """Test cases for failure handling at the engine boundary."""

    @responses.activate
    def test_conflict_is_surfaced_not_retried(self, engine, make_event):
        responses.add(responses.GET, CONTENTS_URL, json=contents_payload(""))
        responses.add(responses.POST, TOKEN_URL, json=TOKEN_RESPONSE, status=201)
        responses.add(
            responses.PUT, CONTENTS_URL,
            json={"message": "all-events.md does not match R1"}, status=409,
        )

        with pytest.raises(ConflictError):
            engine.sync([make_event("Fest A")])

        assert [method for method, _ in urls_called()] == ["GET", "POST", "PUT"]
        assert engine.stage is SyncStage.FAILED

        failure = engine.logs()[-1]
        assert failure.type == "error"
        assert failure.details["stage"] == "writing"
        assert failure.details["kind"] == "conflict"

    @responses.activate
    def test_missing_key_fails_before_token_exchange(self, config, clock, fest_events):
        engine = SyncEngine(replace(config, github_private_key=""), clock=clock)
        responses.add(responses.GET, CONTENTS_URL, status=404)

        with pytest.raises(ConfigurationError):
            engine.sync(fest_events)

        assert urls_called() == [("GET", CONTENTS_URL)]
        assert engine.logs()[-1].details["stage"] == "authenticating"

    @responses.activate
    def test_malformed_location_is_logged(self, config, clock, fest_events):
        engine = SyncEngine(replace(config, repository="no-slash"), clock=clock)

        with pytest.raises(ConfigurationError, match="owner/repo"):
            engine.sync(fest_events)

        assert len(responses.calls) == 0
        assert engine.stage is SyncStage.FAILED
        failure = engine.logs()[-1]
        assert failure.type == "error"
        assert failure.details["kind"] == "configuration"
        assert failure.details["stage"] == "rendering"

    @responses.activate
    def test_expired_credential_is_not_used(self, engine, fest_events):
        responses.add(responses.GET, CONTENTS_URL, status=404)
        responses.add(
            responses.POST, TOKEN_URL,
            json={"token": "t", "expires_at": "2024-06-01T03:00:10Z"}, status=201,
        )

        with pytest.raises(AuthenticationError, match="expired"):
            engine.sync(fest_events)

        assert [method for method, _ in urls_called()] == ["GET", "POST"]

    def test_unexpected_errors_are_wrapped(self, config, clock, fest_events):
        class BrokenRenderer:
            def render(self, events):
                raise RuntimeError("template exploded")

        engine = SyncEngine(config, renderer=BrokenRenderer(), clock=clock)

        with pytest.raises(SyncError) as excinfo:
            engine.sync(fest_events)

        assert excinfo.value.kind == "internal"
        assert isinstance(excinfo.value.__cause__, RuntimeError)
        assert engine.logs()[-1].details["stage"] == "rendering"


class TestSyncLog:
    """Test cases for the diagnostic buffer."""

    @responses.activate
    def test_log_is_shared_across_runs(self, config, clock, fest_events):
        log = SyncLog()
        responses.add(responses.GET, CONTENTS_URL, json=contents_payload(""), status=200)
        responses.add(responses.POST, TOKEN_URL, json={"message": "Bad credentials"}, status=401)

        for _ in range(2):
            with pytest.raises(AuthenticationError):
                SyncEngine(config, clock=clock, log=log).sync(fest_events)

        assert [entry.type for entry in log.entries()] == ["info", "error", "info", "error"]

    def test_log_is_bounded(self):
        log = SyncLog(max_entries=3)
        for i in range(5):
            log.add(LogEntry(FIXED_NOW, "info", f"entry {i}"))

        assert len(log) == 3
        assert [entry.title for entry in log.entries()] == ["entry 2", "entry 3", "entry 4"]

    def test_entry_to_dict(self):
        entry = LogEntry(FIXED_NOW, "error", "GitHub sync failed", {"kind": "conflict"})

        assert entry.to_dict() == {
            "timestamp": "2024-06-01T03:00:00+00:00",
            "type": "error",
            "title": "GitHub sync failed",
            "details": {"kind": "conflict"},
        }
