"""
The DryRunStore implements the Store interface but does not interact with the
cluster and instead holds the state of the cluster in a local map. It enforces
resourceVersion checks the same way the API server does.
"""

# Standard
from queue import Empty, Queue
from threading import RLock
from typing import Callable, Dict, Iterator, List, Optional, Tuple
import copy
import itertools
import threading

# First Party
import alog

# Local
from ..exceptions import VersionConflict, WorkloadNotFound
from ..workload import Workload, WorkloadId, WorkloadKind
from .base import StoreBase
from .kube_event import KubeEventType, KubeWatchEvent

log = alog.use_channel("DRY-RUN")

# How long a watch waits on its queue before checking the stop event
WATCH_POLL_SECONDS = 0.1

_KEY_TYPE = Tuple[str, str, str]


class DryRunStore(StoreBase):
    """
    Store which keeps everything in memory
    """

    def __init__(self, resources: Optional[List[dict]] = None):
        """Construct with an optional list of manifests that already exist in
        the cluster
        """
        self._lock = RLock()
        self._cluster_content: Dict[_KEY_TYPE, dict] = {}
        self._versions = itertools.count(1)
        self._watches: Dict[str, List[Callable[[KubeWatchEvent], None]]] = {}
        for resource in resources or []:
            self.apply(resource)

    ## Interface ###############################################################

    def get(self, kind: WorkloadKind, namespace: str, name: str) -> Workload:
        log.debug("DRY RUN get [%s/%s/%s]", kind.kind, namespace, name)
        with self._lock:
            key = self._key(kind.kind, namespace, name)
            manifest = self._cluster_content.get(key)
            if manifest is None:
                raise WorkloadNotFound(f"{kind.kind}/{namespace}/{name} not found")
            return Workload(kind, manifest)

    def update(self, workload: Workload) -> Workload:
        log.debug("DRY RUN update [%s]", workload)
        key = self._key(workload.kind.kind, workload.namespace, workload.name)
        with self._lock:
            current = self._cluster_content.get(key)
            if current is None:
                raise WorkloadNotFound(f"{workload.id} not found")
            current_version = current["metadata"].get("resourceVersion")
            if workload.resource_version != current_version:
                log.debug2(
                    "DRY RUN conflict on [%s]: %s != %s",
                    workload.id,
                    workload.resource_version,
                    current_version,
                )
                raise VersionConflict(
                    f"{workload.id} has resourceVersion {current_version}, "
                    f"not {workload.resource_version}"
                )
            manifest = self._store(key, workload.manifest)
        self._notify(key, KubeEventType.MODIFIED, manifest)
        return Workload(workload.kind, manifest)

    def watch(
        self,
        kind: WorkloadKind,
        namespace: Optional[str] = None,
        stop_event: Optional[threading.Event] = None,
    ) -> Iterator[KubeWatchEvent]:
        """Watch the DryRunStore by registering a callback. Existing objects
        are replayed as ADDED events first.
        """
        stop_event = stop_event or threading.Event()
        event_queue = Queue()

        def matches(key: _KEY_TYPE) -> bool:
            return key[0] == kind.kind and namespace in (None, "", key[1])

        with self._lock:
            for key, manifest in sorted(self._cluster_content.items()):
                if matches(key):
                    event_queue.put(
                        self._make_event(key, KubeEventType.ADDED, manifest)
                    )
            self._watches.setdefault(kind.kind, []).append(event_queue.put)

        try:
            while not stop_event.is_set():
                try:
                    event = event_queue.get(timeout=WATCH_POLL_SECONDS)
                except Empty:
                    continue
                workload_id = event.workload_id
                key = (workload_id.kind, workload_id.namespace, workload_id.name)
                if matches(key):
                    log.debug2("Yielding event %s", event)
                    yield event
        finally:
            with self._lock:
                self._watches[kind.kind].remove(event_queue.put)

    ## Dry Run Methods #########################################################

    def apply(self, manifest: dict) -> dict:
        """Create or overwrite an object without any version check, like an
        unconditional write from another client
        """
        key = self._key(
            manifest.get("kind"),
            manifest.get("metadata", {}).get("namespace"),
            manifest.get("metadata", {}).get("name"),
        )
        with self._lock:
            event_type = (
                KubeEventType.MODIFIED
                if key in self._cluster_content
                else KubeEventType.ADDED
            )
            stored = self._store(key, manifest)
        self._notify(key, event_type, stored)
        return copy.deepcopy(stored)

    def delete(self, kind: str, namespace: str, name: str) -> bool:
        """Remove an object. Returns whether it existed."""
        key = self._key(kind, namespace, name)
        with self._lock:
            manifest = self._cluster_content.pop(key, None)
        if manifest is None:
            return False
        self._notify(key, KubeEventType.DELETED, manifest)
        return True

    def list_ids(self, kind: str) -> List[WorkloadId]:
        """List the ids of all stored objects of the given kind"""
        with self._lock:
            return [
                WorkloadId(*key)
                for key in sorted(self._cluster_content)
                if key[0] == kind
            ]

    def get_manifest(self, kind: str, namespace: str, name: str) -> Optional[dict]:
        """Get a copy of the raw stored manifest"""
        with self._lock:
            manifest = self._cluster_content.get(self._key(kind, namespace, name))
            return copy.deepcopy(manifest)

    ## Implementation Details ##################################################

    @staticmethod
    def _key(kind: str, namespace: str, name: str) -> _KEY_TYPE:
        assert kind and name, "Cannot store an object without kind and name"
        return (kind, namespace or "default", name)

    def _store(self, key: _KEY_TYPE, manifest: dict) -> dict:
        manifest = copy.deepcopy(manifest)
        metadata = manifest.setdefault("metadata", {})
        metadata.setdefault("namespace", key[1])
        metadata["resourceVersion"] = str(next(self._versions))
        self._cluster_content[key] = manifest
        return copy.deepcopy(manifest)

    @staticmethod
    def _make_event(key: _KEY_TYPE, event_type: KubeEventType, manifest: dict):
        return KubeWatchEvent(
            type=event_type,
            workload_id=WorkloadId(*key),
            resource_version=manifest.get("metadata", {}).get("resourceVersion"),
        )

    def _notify(self, key: _KEY_TYPE, event_type: KubeEventType, manifest: dict):
        with self._lock:
            callbacks = list(self._watches.get(key[0], []))
        for callback in callbacks:
            log.debug3("Calling registered watch for %s", key)
            callback(self._make_event(key, event_type, manifest))
