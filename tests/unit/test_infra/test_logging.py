"""Unit tests for the JSON formatter, log context injection and lazy loggers."""

from __future__ import annotations

import json
import logging
import sys
import uuid

import pytest

from notify_service.infra.logging import (
    ContextInjectingFilter,
    JSONFormatter,
    clear_log_context,
    get_lazy_logger,
    log_context,
)


def _record(msg: str = "Delivered %s", *args, **extra) -> logging.LogRecord:
    record = logging.LogRecord("notify_service.test", logging.INFO, __file__, 10, msg, args or ("entry",), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class _ListHandler(logging.Handler):
    def __init__(self) -> None:
        super().__init__(logging.DEBUG)
        self.records: list[logging.LogRecord] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(record)


# ============================================================================
# JSONFormatter
# ============================================================================


@pytest.mark.unit
class TestJSONFormatter:
    """One JSON object per record."""

    def test_core_fields(self):
        data = json.loads(JSONFormatter().format(_record()))

        assert data["level"] == "INFO"
        assert data["logger"] == "notify_service.test"
        assert data["message"] == "Delivered entry"
        assert data["timestamp"].endswith("Z")

    def test_extras_and_static_fields(self):
        formatter = JSONFormatter(static={"service": "notify-service"})

        data = json.loads(formatter.format(_record(tenant_id="acme", operation="dispatch.send")))

        assert data["tenant_id"] == "acme"
        assert data["operation"] == "dispatch.send"
        assert data["service"] == "notify-service"

    def test_exception_stays_on_one_line(self):
        try:
            raise RuntimeError("provider down")
        except RuntimeError:
            record = logging.LogRecord("x", logging.ERROR, __file__, 1, "boom", (), exc_info=sys.exc_info())

        line = JSONFormatter().format(record)

        assert "\n" not in line
        assert "provider down" in json.loads(line)["exception"]

    def test_unserializable_values_are_stringified(self):
        entry_id = uuid.UUID(int=7)

        data = json.loads(JSONFormatter().format(_record(entry_id=entry_id)))

        assert data["entry_id"] == str(entry_id)


# ============================================================================
# Context injection
# ============================================================================


@pytest.mark.unit
class TestContextInjectingFilter:
    """Bound context lands on records without overwriting explicit extras."""

    def test_injects_bound_context(self):
        record = _record()
        with log_context(tenant_id="acme", worker_id="worker-1"):
            assert ContextInjectingFilter().filter(record)

        assert record.tenant_id == "acme"
        assert record.worker_id == "worker-1"

    def test_explicit_extra_wins(self):
        record = _record(tenant_id="globex")
        with log_context(tenant_id="acme"):
            ContextInjectingFilter().filter(record)

        assert record.tenant_id == "globex"

    def test_context_is_restored_after_block(self):
        clear_log_context()
        with log_context(entry_id="e-1"):
            pass
        record = _record()
        ContextInjectingFilter().filter(record)

        assert not hasattr(record, "entry_id")


# ============================================================================
# Lazy logger
# ============================================================================


@pytest.mark.unit
class TestLazyLogger:
    """Callables are only evaluated when the level is enabled."""

    @pytest.fixture
    def captured(self):
        base = logging.getLogger("notify_service.test.lazy")
        handler = _ListHandler()
        base.addHandler(handler)
        base.propagate = False
        yield base, handler
        base.removeHandler(handler)
        base.propagate = True
        base.setLevel(logging.NOTSET)

    def test_disabled_level_skips_evaluation(self, captured):
        base, handler = captured
        base.setLevel(logging.INFO)
        calls = []

        get_lazy_logger(base.name).debug(lambda: calls.append(1) or "expensive")

        assert calls == []
        assert handler.records == []

    def test_enabled_level_evaluates_message_and_args(self, captured):
        base, handler = captured
        base.setLevel(logging.DEBUG)

        get_lazy_logger(base.name, component="queue").debug("claimed %s", lambda: 3)

        assert handler.records[0].getMessage() == "claimed 3"
        assert handler.records[0].component == "queue"
