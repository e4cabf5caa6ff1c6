# tests/utils/test_logging_setup.py
"""Tests for run correlation IDs and logging configuration."""

import asyncio
import io
import json
import logging
from decimal import Decimal

import pytest

from gainday.utils.context import get_correlation_id, new_correlation_id, run_context
from gainday.utils.logging import (
    NO_CORRELATION_ID,
    NO_JOB,
    CorrelationIdFilter,
    JsonFormatter,
    _get_log_level,
    job_of,
    setup_logging,
)


def make_record(message: str = "hello", **extra) -> logging.LogRecord:
    record = logging.LogRecord("gainday.test", logging.INFO, __file__, 1, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestRunContext:

    def test_prefix(self):
        run_id = new_correlation_id("backfill")

        assert run_id.startswith("backfill-")
        assert len(run_id) == len("backfill-") + 8

    def test_set_and_restored(self):
        assert get_correlation_id() is None

        with run_context("refresh") as outer:
            assert get_correlation_id() == outer
            with run_context("rankings") as inner:
                assert get_correlation_id() == inner
            assert get_correlation_id() == outer

        assert get_correlation_id() is None

    @pytest.mark.asyncio
    async def test_visible_in_gathered_tasks(self):
        async def read_id():
            await asyncio.sleep(0)
            return get_correlation_id()

        with run_context("refresh") as run_id:
            seen = await asyncio.gather(read_id(), read_id())

        assert seen == [run_id, run_id]


class TestCorrelationIdFilter:

    def test_outside_run(self):
        record = make_record()

        assert CorrelationIdFilter().filter(record)
        assert record.correlation_id == NO_CORRELATION_ID
        assert record.job == NO_JOB

    def test_inside_run(self):
        record = make_record()
        with run_context("backfill") as run_id:
            CorrelationIdFilter().filter(record)

        assert record.correlation_id == run_id
        assert record.job == "backfill"

    @pytest.mark.parametrize("correlation_id, job", [
        ("refresh-3f2a9c1b", "refresh"),
        ("rankings-00000000", "rankings"),
        (None, NO_JOB),
    ])
    def test_job_of(self, correlation_id, job):
        assert job_of(correlation_id) == job


class TestJsonFormatter:

    def test_fields_and_extra(self):
        record = make_record("Backfill done", correlation_id="backfill-1", job="backfill", created_count=4)

        entry = json.loads(JsonFormatter().format(record))

        assert entry["level"] == "INFO"
        assert entry["logger"] == "gainday.test"
        assert entry["job"] == "backfill"
        assert entry["correlation_id"] == "backfill-1"
        assert entry["message"] == "Backfill done"
        assert entry["extra"] == {"created_count": 4}

    def test_unserializable_extra_stringified(self):
        record = make_record(total=Decimal("1.50"))

        entry = json.loads(JsonFormatter().format(record))

        assert entry["extra"]["total"] == "1.50"
        assert entry["correlation_id"] == NO_CORRELATION_ID


class TestSetupLogging:

    @pytest.fixture(autouse=True)
    def restore_root(self):
        root = logging.getLogger()
        handlers, level = root.handlers[:], root.level
        yield
        root.handlers[:] = handlers
        root.setLevel(level)

    def test_json_lines_carry_run(self):
        stream = io.StringIO()
        setup_logging(level="debug", log_format="json", stream=stream)

        with run_context("refresh") as run_id:
            logging.getLogger("gainday.services.snapshots.refresh").info("Refresh started")

        last = json.loads(stream.getvalue().strip().splitlines()[-1])
        assert last["correlation_id"] == run_id
        assert last["job"] == "refresh"
        assert logging.getLogger().level == logging.DEBUG
        assert logging.getLogger("yfinance").level == logging.WARNING

    def test_text_format(self):
        stream = io.StringIO()
        handler = setup_logging(level="INFO", log_format="text", stream=stream)

        logging.getLogger("gainday.test").warning("Missing FX rate USDJPY, using 1")

        assert logging.getLogger().handlers == [handler]
        line = stream.getvalue().strip().splitlines()[-1]
        assert "| WARNING  |" in line
        assert NO_CORRELATION_ID in line
        assert line.endswith("gainday.test | Missing FX rate USDJPY, using 1")

    def test_invalid_level(self):
        with pytest.raises(ValueError):
            _get_log_level("LOUD")

    def test_warn_alias(self):
        assert _get_log_level(" warn ") == logging.WARNING
