"""
This defines the base class for all Store types. A store is the authoritative
source of workload objects and enforces optimistic concurrency on writes.
"""

# Standard
from typing import Iterator, Optional
import abc
import threading

# Local
from ..workload import Workload, WorkloadKind
from .kube_event import KubeWatchEvent


class StoreBase(abc.ABC):
    """Base class for the cluster stores the reconciler reads and writes"""

    @abc.abstractmethod
    def get(self, kind: WorkloadKind, namespace: str, name: str) -> Workload:
        """Fetch a fresh snapshot of the named workload

        Args:
            kind:  WorkloadKind
                The kind of workload to fetch
            namespace:  str
                The namespace of the workload
            name:  str
                The name of the workload

        Returns:
            workload:  Workload
                The current snapshot including its resourceVersion

        Raises:
            WorkloadNotFound: The workload does not exist
            StoreFetchError: The read failed for any other reason
        """

    @abc.abstractmethod
    def update(self, workload: Workload) -> Workload:
        """Replace the stored workload with the given snapshot. The write is
        only accepted if the snapshot's resourceVersion still matches.

        Args:
            workload:  Workload
                The snapshot to write, carrying the version token it was read
                with

        Returns:
            updated:  Workload
                The stored object as returned by the store

        Raises:
            VersionConflict: Another writer changed the object since it was read
            WorkloadNotFound: The workload no longer exists
            StoreUpdateError: The write failed for any other reason
        """

    @abc.abstractmethod
    def watch(
        self,
        kind: WorkloadKind,
        namespace: Optional[str] = None,
        stop_event: Optional[threading.Event] = None,
    ) -> Iterator[KubeWatchEvent]:
        """Stream change events for all workloads of a kind until the stop
        event is set

        Args:
            kind:  WorkloadKind
                The kind of workload to watch
            namespace:  Optional[str]
                If given, only watch this namespace
            stop_event:  Optional[threading.Event]
                Event that terminates the stream when set

        Returns:
            watch_stream:  Iterator[KubeWatchEvent]
                Events for existing objects followed by live changes
        """
