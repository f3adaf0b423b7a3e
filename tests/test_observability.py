"""Tests for observability utilities."""

import json
import logging

from neolease.observability.correlation import reset_correlation_id, set_correlation_id
from neolease.observability.logging import JsonFormatter, get_logger
from neolease.observability.redaction import (
    id_prefix,
    redact_string,
    redact_value,
    safe_log_context,
)


class TestRedaction:
    def test_redact_phone_number(self):
        result = redact_string("Call me at +91 98765 43210")
        assert "98765" not in result
        assert "[REDACTED]" in result

    def test_redact_email(self):
        result = redact_string("Email: renter@example.com")
        assert "renter@example.com" not in result

    def test_redact_signature_digest(self):
        digest = "a" * 64
        assert digest not in redact_string(f"sig={digest}")

    def test_redact_value_dict_only_keys(self):
        result = redact_value({"password": "secret123", "user": "john"})
        assert "secret123" not in result
        assert "password" in result

    def test_redact_value_list_only_len(self):
        assert redact_value(["a", "b", "c"]) == "list(len=3)"

    def test_scalars(self):
        assert redact_value(None) == "null"
        assert redact_value(True) == "true"
        assert redact_value(150000) == "150000"

    def test_secret_keys_always_dropped(self):
        ctx = safe_log_context(provider_signature="short", count=42)
        assert ctx == {"provider_signature": "[REDACTED]", "count": "42"}

    def test_none_values_are_omitted(self):
        ctx = safe_log_context(correlationId=None, payment_id="p-1", attempt=0)
        assert ctx == {"payment_id": "p-1", "attempt": "0"}


class TestIdPrefix:
    def test_truncates(self):
        assert id_prefix("pay_ABCDEFGHIJ") == "pay_ABCD"

    def test_short_and_empty(self):
        assert id_prefix("pay_1") == "pay_1"
        assert id_prefix(None) == ""


class TestJsonFormatter:
    def _record(self, **extra):
        record = logging.LogRecord("neolease.test", logging.INFO, __file__, 1, "hello", None, None)
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_fields(self):
        out = json.loads(JsonFormatter().format(self._record(extra_fields={"order_id": "o1"})))
        assert out["service"] == "neolease"
        assert out["level"] == "INFO"
        assert out["message"] == "hello"
        assert out["order_id"] == "o1"

    def test_correlation_id_included(self):
        token = set_correlation_id("cid-123")
        try:
            out = json.loads(JsonFormatter().format(self._record()))
        finally:
            reset_correlation_id(token)
        assert out["correlationId"] == "cid-123"


def test_get_logger_configures_once():
    first = get_logger("neolease.test.once")
    second = get_logger("neolease.test.once")
    assert first is second
    assert len(first.handlers) == 1
    assert first.propagate is False
