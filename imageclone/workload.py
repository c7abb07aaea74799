"""
Representation of the workload kinds whose container images get cloned. Every
kind exposes the same get/set container capability so that a single reconcile
algorithm can serve all of them.
"""

# Standard
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence
import copy

# First Party
import alog

# Local
from . import constants
from .exceptions import ConfigError

log = alog.use_channel("WRKLD")


## Value types #################################################################


@dataclass(frozen=True)
class Container:
    """A single entry in a pod template's container list"""

    name: str
    image: str


@dataclass(frozen=True)
class WorkloadId:
    """The identity carried by a reconciliation notification"""

    kind: str
    namespace: str
    name: str

    def __str__(self):
        return f"{self.kind}/{self.namespace}/{self.name}"


## Kinds #######################################################################


@dataclass(frozen=True)
class WorkloadKind:
    """Capability descriptor for a kind of workload. The containers of every
    supported kind live under spec.template.spec.containers.
    """

    kind: str
    api_version: str

    def get_containers(self, manifest: dict) -> List[Container]:
        """Read the ordered container list out of a manifest"""
        return [
            Container(name=entry.get("name"), image=entry.get("image"))
            for entry in self._container_entries(manifest)
        ]

    def set_containers(self, manifest: dict, containers: Sequence[Container]):
        """Write the images of the given containers back into the manifest in
        place. Only image fields change; the list must match the manifest's
        containers one for one.
        """
        entries = self._container_entries(manifest)
        assert len(entries) == len(
            containers
        ), f"Cannot change the number of containers on a {self.kind}"
        for entry, container in zip(entries, containers):
            assert entry.get("name") == container.name, (
                f"Container order mismatch on {self.kind}: "
                f"{entry.get('name')} != {container.name}"
            )
            entry["image"] = container.image

    def _container_entries(self, manifest: dict) -> List[dict]:
        current = manifest
        for part in constants.CONTAINERS_PATH:
            current = (current or {}).get(part)
        return current or []


DEPLOYMENT = WorkloadKind(kind="Deployment", api_version="apps/v1")
DAEMONSET = WorkloadKind(kind="DaemonSet", api_version="apps/v1")

_ALL_KINDS: Dict[str, WorkloadKind] = {
    DEPLOYMENT.kind: DEPLOYMENT,
    DAEMONSET.kind: DAEMONSET,
}


def get_kind(kind_name: str) -> WorkloadKind:
    """Look up a supported workload kind by name (case insensitive)"""
    for name, kind in _ALL_KINDS.items():
        if name.lower() == (kind_name or "").lower():
            return kind
    raise ConfigError(
        f"Unsupported workload kind [{kind_name}]. Supported: {list(_ALL_KINDS)}"
    )


def supported_kinds() -> List[WorkloadKind]:
    return list(_ALL_KINDS.values())


## Snapshot ####################################################################


class Workload:
    """A transient, versioned snapshot of a workload read from the store"""

    def __init__(self, kind: WorkloadKind, manifest: dict):
        self.kind = kind
        self.manifest = copy.deepcopy(manifest)
        metadata = self.manifest.setdefault("metadata", {})
        self.name = metadata.get("name")
        self.namespace = metadata.get("namespace")
        assert self.name is not None, "No name found"

    @property
    def id(self) -> WorkloadId:  # pylint: disable=invalid-name
        return WorkloadId(self.kind.kind, self.namespace, self.name)

    @property
    def resource_version(self) -> Optional[str]:
        """The version token the store checks on update"""
        return self.manifest["metadata"].get("resourceVersion")

    @property
    def containers(self) -> List[Container]:
        return self.kind.get_containers(self.manifest)

    def with_containers(self, containers: Sequence[Container]) -> "Workload":
        """Return a new snapshot with the given container images applied. The
        version token is carried over unchanged.
        """
        updated = Workload(self.kind, self.manifest)
        self.kind.set_containers(updated.manifest, containers)
        return updated

    def __str__(self):
        return f"{self.id}@{self.resource_version}"

    def __repr__(self):
        return str(self)
