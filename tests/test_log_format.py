"""
Tests for the json log formatter and the reconcile logging context
"""
# Standard
import json
import logging
import threading

# Local
from imageclone.log_format import (
    ImageCloneJsonFormatter,
    current_context,
    reconcile_context,
)
from imageclone.workload import WorkloadId

WORKLOAD_ID = WorkloadId("Deployment", "test", "web")


def make_record():
    return logging.LogRecord("TEST", logging.INFO, __file__, 1, "hello", None, None)


def test_reconcile_context_nests_and_resets():
    assert current_context() is None
    with reconcile_context(WORKLOAD_ID, "outer"):
        assert current_context() == (WORKLOAD_ID, "outer")
        with reconcile_context(WORKLOAD_ID, "inner"):
            assert current_context() == (WORKLOAD_ID, "inner")
        assert current_context() == (WORKLOAD_ID, "outer")
    assert current_context() is None


def test_reconcile_context_is_per_thread():
    seen = []
    with reconcile_context(WORKLOAD_ID, "main"):
        thread = threading.Thread(target=lambda: seen.append(current_context()))
        thread.start()
        thread.join()
    assert seen == [None]


def test_formatter_adds_workload_fields():
    record = make_record()
    with reconcile_context(WORKLOAD_ID, "rid-1"):
        output = ImageCloneJsonFormatter().format(record)
    assert record.kind == "Deployment"
    assert record.namespace == "test"
    assert record.resourceName == "web"
    assert record.reconciliationId == "rid-1"
    parsed = json.loads(output)
    assert parsed["reconciliationId"] == "rid-1"
    assert parsed["resourceName"] == "web"


def test_formatter_without_context():
    record = make_record()
    json.loads(ImageCloneJsonFormatter().format(record))
    assert not hasattr(record, "reconciliationId")
