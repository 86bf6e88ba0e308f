"""
Test Module: test_observability.py
Description: Tests for the metrics collector and timing helpers.

Author: Finance Tracker Team
"""

import logging

import pytest

from conftest import run
from services.observability import MetricsCollector, log_chat_request, logger, metrics, timed


@pytest.fixture(autouse=True)
def clean_metrics():
    metrics.reset()
    yield
    metrics.reset()


class TestMetricsCollector:

    def test_tagged_counters_are_kept_apart(self):
        collector = MetricsCollector()

        collector.increment("chat.intents", tags={"intent": "add"})
        collector.increment("chat.intents", tags={"intent": "add"})
        collector.increment("chat.intents", tags={"intent": "help"})

        counters = collector.get_summary()["counters"]
        assert counters == {"chat.intents:intent=add": 2, "chat.intents:intent=help": 1}

    def test_timing_summary(self):
        collector = MetricsCollector()
        for value in (10, 20, 30):
            collector.timing("csv.import", value)

        timing = collector.get_summary()["timings"]["csv.import"]
        assert timing["count"] == 3
        assert timing["avg_ms"] == 20
        assert timing["p95_ms"] is None


class TestTimed:

    def test_sync_success(self):
        @timed("job")
        def job():
            return 42

        assert job() == 42
        assert metrics.counters["job.success"] == 1
        assert len(metrics.timings["job"]) == 1

    def test_async_error_is_counted_and_reraised(self):
        @timed("job")
        async def job():
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            run(job())

        assert metrics.counters["job.error"] == 1


class TestStructuredLogger:

    def test_bound_fields_are_appended(self, caplog):
        with caplog.at_level(logging.INFO, logger="finance-tracker"):
            logger.bind(user_id="abc").info("Chat request", msg_length=12, note="two words")

        assert caplog.messages == ["Chat request | user_id=abc msg_length=12 note='two words'"]

    def test_chat_request_carries_user_id(self, caplog):
        with caplog.at_level(logging.INFO, logger="finance-tracker"):
            log_chat_request("abcdefghijkl", 42)

        assert caplog.messages == ["Chat request | user_id=abcdefgh msg_length=42"]
        assert metrics.counters["chat.requests"] == 1
