"""
Helper module to define shared types related to Kube Events
"""

# Standard
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

# Local
from ..workload import WorkloadId


class KubeEventType(Enum):
    """Enum for all possible kubernetes event types"""

    DELETED = "DELETED"
    MODIFIED = "MODIFIED"
    ADDED = "ADDED"


@dataclass
class KubeWatchEvent:
    """DataClass containing the type, workload identity, and timestamp of a
    particular event. Events carry no object content; reconciliation always
    re-reads the object.
    """

    type: KubeEventType
    workload_id: WorkloadId
    resource_version: str = None
    timestamp: datetime = field(default_factory=datetime.now)
