"""
Unit tests for orgsync structured logging.

Verifies that ``event`` emits one JSON line per call and never leaks
credential-looking fields.
"""

from __future__ import annotations

import json
import logging

import pytest

from orgsync.importers.hierarchy import create_in_hierarchy
from orgsync.logging_setup import SafeFilter, configure_logging, event
from orgsync.stores.memory import InMemoryStore


class TestEvent:
    def test_event_renders_sorted_json(self, caplog: pytest.LogCaptureFixture):
        caplog.set_level(logging.INFO, logger="orgsync.events")

        event("import.completed", org_id="org-1", departments_created=2)

        payload = json.loads(caplog.records[-1].getMessage())
        assert payload == {"event": "import.completed", "org_id": "org-1", "departments_created": 2}

    def test_sensitive_fields_are_redacted(self, caplog: pytest.LogCaptureFixture):
        caplog.set_level(logging.INFO, logger="orgsync.events")

        event(
            "store.connected",
            url="https://graphql.test",
            admin_secret="s3cret",
            headers={"Authorization": "Bearer abc", "accept": "json"},
        )

        message = caplog.records[-1].getMessage()
        assert "s3cret" not in message
        assert "Bearer abc" not in message
        payload = json.loads(message)
        assert payload["admin_secret"] == "***"
        assert payload["headers"] == {"Authorization": "***", "accept": "json"}

    def test_counters_named_like_secrets_are_kept(self, caplog: pytest.LogCaptureFixture):
        caplog.set_level(logging.INFO, logger="orgsync.events")

        event("store.ready", pass_number=2, keyboard="us", service_role_key="eyJ", api_key="k", apikey="k")

        payload = json.loads(caplog.records[-1].getMessage())
        assert payload["pass_number"] == 2
        assert payload["keyboard"] == "us"
        assert payload["service_role_key"] == payload["api_key"] == payload["apikey"] == "***"

    def test_hierarchy_pass_event_reports_pass_number(self, caplog: pytest.LogCaptureFixture, make_department):
        caplog.set_level(logging.INFO, logger="orgsync.events")
        records = [make_department("A"), make_department("B", "A")]

        create_in_hierarchy(InMemoryStore(), "org-1", records, {})

        payloads = [json.loads(record.getMessage()) for record in caplog.records if record.name == "orgsync.events"]
        passes = [payload for payload in payloads if payload["event"] == "import.hierarchy_pass"]
        assert [(payload["pass_number"], payload["created"], payload["remaining"]) for payload in passes] == [
            (1, 1, 1),
            (2, 1, 0),
        ]

    def test_filter_leaves_plain_records_alone(self):
        record = logging.LogRecord("orgsync", logging.INFO, __file__, 1, "plain %s", ("text",), None)

        assert SafeFilter().filter(record) is True
        assert record.getMessage() == "plain text"


def test_configure_logging_sets_root_level():
    root = logging.getLogger()
    previous = root.level
    try:
        configure_logging("warning")
        assert root.level == logging.WARNING
        assert all(any(isinstance(f, SafeFilter) for f in handler.filters) for handler in root.handlers)
    finally:
        root.setLevel(previous)
