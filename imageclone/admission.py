"""
The admission filter decides whether a workload may be touched at all before
any cluster I/O happens
"""

# Standard
from typing import Iterable, Optional

# First Party
import alog

# Local
from . import config

log = alog.use_channel("ADMIT")


class AdmissionFilter:
    """Excludes workloads by namespace"""

    def __init__(self, excluded_namespaces: Optional[Iterable[str]] = None):
        """
        Args:
            excluded_namespaces:  Optional[Iterable[str]]
                Namespaces that are never reconciled. Defaults to the
                excluded_namespaces library config.
        """
        if excluded_namespaces is None:
            excluded_namespaces = config.excluded_namespaces
        self.excluded_namespaces = frozenset(excluded_namespaces)

    def admit(self, namespace: str) -> bool:
        """Return True if workloads in the namespace are eligible for mutation"""
        return namespace not in self.excluded_namespaces

    def __str__(self):
        return f"AdmissionFilter(excluded={sorted(self.excluded_namespaces)})"
