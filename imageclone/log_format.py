"""
Custom logging formats that contain more detailed reconcile logs
"""

# Standard
from contextlib import contextmanager
from typing import Optional
import threading

# First Party
from alog import AlogJsonFormatter

# Local
from .workload import WorkloadId

# Each worker thread reconciles one workload at a time
_context = threading.local()


@contextmanager
def reconcile_context(workload_id: WorkloadId, reconciliation_id: str):
    """Attach the workload identity and reconcile id to all json log lines
    emitted by the current thread while the context is active
    """
    previous = getattr(_context, "value", None)
    _context.value = (workload_id, reconciliation_id)
    try:
        yield
    finally:
        _context.value = previous


def current_context() -> Optional[tuple]:
    return getattr(_context, "value", None)


class ImageCloneJsonFormatter(AlogJsonFormatter):
    """Custom Log Format that extends AlogJsonFormatter to add the identity of
    the workload being reconciled, the reconciliationId, and thread information
    """

    _FIELDS_TO_PRINT = AlogJsonFormatter._FIELDS_TO_PRINT + [
        "process",
        "thread",
        "threadName",
        "kind",
        "namespace",
        "resourceName",
        "reconciliationId",
    ]

    def format(self, record):
        context = current_context()
        if context:
            workload_id, reconciliation_id = context
            record.kind = workload_id.kind
            record.namespace = workload_id.namespace
            record.resourceName = workload_id.name
            record.reconciliationId = reconciliation_id
        return super().format(record)
