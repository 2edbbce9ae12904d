"""
Unit tests for the structured logging helpers.
"""

import json
import logging

import pytest

from passport.core.logging.logger import (
    ContextFilter,
    JSONFormatter,
    LogContext,
    get_log_context,
)


def _record(message: str = "hello", **extra) -> logging.LogRecord:
    record = logging.LogRecord("passport.test", logging.INFO, __file__, 10, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.mark.unit
class TestLogContext:
    def test_binds_and_restores(self):
        assert get_log_context() == {}

        with LogContext(subject_id=42, trigger_event="check_in") as ctx:
            current = get_log_context()
            assert current["subject_id"] == "42"
            assert current["trigger_event"] == "check_in"
            assert current["correlation_id"] == ctx.context["correlation_id"]

        assert get_log_context() == {}

    def test_nested_context_keeps_correlation_id(self):
        with LogContext(subject_id="u-1", correlation_id="abc123"):
            with LogContext(operation="apply_rule"):
                current = get_log_context()

        assert current["correlation_id"] == "abc123"
        assert current["subject_id"] == "u-1"
        assert current["operation"] == "apply_rule"

    async def test_async_usage(self):
        async with LogContext(subject_id="u-2"):
            assert get_log_context()["subject_id"] == "u-2"

        assert "subject_id" not in get_log_context()


@pytest.mark.unit
class TestFormatting:
    def test_filter_copies_context_onto_record(self):
        record = _record()

        with LogContext(subject_id="u-3", trigger_event="review_posted", component="gamification"):
            ContextFilter().filter(record)

        assert record.subject_id == "u-3"
        assert record.trigger_event == "review_posted"
        assert record.component == "gamification"

    def test_filter_defaults_outside_context(self):
        record = _record()

        ContextFilter().filter(record)

        assert record.subject_id == "N/A"
        assert record.correlation_id == "N/A"

    def test_json_contains_context_and_extra(self):
        record = _record("Rule applied", rule_id=7)
        with LogContext(subject_id="u-4", correlation_id="c0ffee"):
            ContextFilter().filter(record)

        data = json.loads(JSONFormatter().format(record))

        assert data["message"] == "Rule applied"
        assert data["subject_id"] == "u-4"
        assert data["correlation_id"] == "c0ffee"
        assert "trigger_event" not in data
        assert data["extra"]["rule_id"] == 7
        assert "lineno" not in data["extra"]
