import json
import logging

from shared.core import HealthStatus, ServiceHealth
from shared.core.logging_config import SecurityFilter, StructuredFormatter


def make_record(fields):
    record = logging.LogRecord("marketplace", logging.INFO, __file__, 1, "payout", None, None)
    record.extra_fields = fields
    return record

def test_security_filter_redacts_payout_credentials():
    record = make_record({"pix_key": "me@bank", "amount": "10.00"})
    assert SecurityFilter().filter(record)
    assert record.extra_fields == {"pix_key": "***REDACTED***", "amount": "10.00"}

def test_formatter_emits_custom_fields_as_json():
    payload = json.loads(StructuredFormatter().format(make_record({"order_id": 7})))
    assert payload["message"] == "payout"
    assert payload["custom"] == {"order_id": 7}

def test_overall_status_is_worst_check():
    assert ServiceHealth.calculate_overall_status({"a": {"status": "pass"}}) == HealthStatus.PASS
    assert ServiceHealth.calculate_overall_status(
        {"a": {"status": "pass"}, "b": {"status": "warn"}}
    ) == HealthStatus.WARN
    assert ServiceHealth.calculate_overall_status(
        {"a": {"status": "warn"}, "b": {"status": "fail"}}
    ) == HealthStatus.FAIL

def test_database_check_passes_on_live_engine(engine):
    check = ServiceHealth("marketplace-service", "test", engine)._check_database()
    assert check["status"] == HealthStatus.PASS.value
