"""
This Store is responsible for delegating cluster operations to the openshift
dynamic client. It is the one that will be used when the controller is running
in the cluster or outside the cluster against a live cluster.
"""
# Standard
from typing import Iterator, Optional
import copy
import threading

# Third Party
from kubernetes import client
from kubernetes.watch import Watch
from openshift.dynamic import DynamicClient
from openshift.dynamic.exceptions import (
    ConflictError,
    DynamicApiError,
    NotFoundError,
    ResourceNotFoundError,
    ResourceNotUniqueError,
)
from openshift.dynamic.resource import Resource
import kubernetes
import urllib3

# First Party
import alog

# Local
from .. import constants
from ..exceptions import (
    StoreFetchError,
    StoreUpdateError,
    VersionConflict,
    WorkloadNotFound,
)
from ..workload import Workload, WorkloadId, WorkloadKind
from .base import StoreBase
from .kube_event import KubeEventType, KubeWatchEvent

log = alog.use_channel("KUBESTORE")

# See this document for value reasonings
# https://github.com/kubernetes-client/python/blob/master/examples/watch/timeout-settings.md
SERVER_WATCH_TIMEOUT = 3600
CLIENT_WATCH_TIMEOUT = 30


class KubernetesStore(StoreBase):
    """This Store uses the openshift DynamicClient to interact with the
    cluster
    """

    def __init__(self, dynamic_client: Optional[DynamicClient] = None):
        """
        Args:
            dynamic_client:  Optional[DynamicClient]
                A preconfigured client. If not given, one is created lazily
                from the in-cluster config or the local kubeconfig.
        """
        self._client = dynamic_client

    @property
    def client(self):
        """Lazy property access to the client"""
        if self._client is None:
            self._client = self._setup_client()
        return self._client

    ## Interface ###############################################################

    def get(self, kind: WorkloadKind, namespace: str, name: str) -> Workload:
        resource_handle = self._get_resource_handle(kind)
        try:
            resource = resource_handle.get(name=name, namespace=namespace)
        except NotFoundError as err:
            log.debug(
                "No object named [%s/%s] found in namespace [%s]",
                kind.kind,
                name,
                namespace,
            )
            raise WorkloadNotFound(f"{kind.kind}/{namespace}/{name} not found") from err
        except (DynamicApiError, urllib3.exceptions.HTTPError) as err:
            raise StoreFetchError(
                f"Failed to fetch {kind.kind}/{namespace}/{name}: {err}"
            ) from err
        return Workload(kind, resource.to_dict())

    def update(self, workload: Workload) -> Workload:
        # The manifest carries metadata.resourceVersion, so the API server
        # rejects the replace with a 409 if the object changed since the read
        assert (
            workload.resource_version is not None
        ), "Programming Error: cannot update a workload without a resourceVersion"
        resource_handle = self._get_resource_handle(workload.kind)
        manifest = copy.deepcopy(workload.manifest)
        manifest["metadata"]["managedFields"] = None

        log.debug2(
            "Attempting to replace [%s] at resourceVersion [%s]",
            workload.id,
            workload.resource_version,
        )
        try:
            updated = resource_handle.replace(
                manifest,
                name=workload.name,
                namespace=workload.namespace,
                field_manager=constants.FIELD_MANAGER,
            )
        except ConflictError as err:
            raise VersionConflict(f"{workload.id} changed since it was read") from err
        except NotFoundError as err:
            raise WorkloadNotFound(f"{workload.id} not found") from err
        except (DynamicApiError, urllib3.exceptions.HTTPError) as err:
            raise StoreUpdateError(f"Failed to update {workload.id}: {err}") from err
        return Workload(workload.kind, updated.to_dict())

    def watch(
        self,
        kind: WorkloadKind,
        namespace: Optional[str] = None,
        stop_event: Optional[threading.Event] = None,
    ) -> Iterator[KubeWatchEvent]:
        stop_event = stop_event or threading.Event()
        resource_handle = self._get_resource_handle(kind)
        resource_version = None
        watch_manager = Watch()

        while not stop_event.is_set():
            try:
                for event_obj in watch_manager.stream(
                    resource_handle.get,
                    resource_version=resource_version,
                    namespace=namespace or None,
                    serialize=False,
                    timeout_seconds=SERVER_WATCH_TIMEOUT,
                    _request_timeout=CLIENT_WATCH_TIMEOUT,
                ):
                    metadata = event_obj["object"].get("metadata", {})
                    resource_version = metadata.get("resourceVersion")
                    yield KubeWatchEvent(
                        type=KubeEventType(event_obj["type"]),
                        workload_id=WorkloadId(
                            kind.kind, metadata.get("namespace"), metadata.get("name")
                        ),
                        resource_version=resource_version,
                    )
                    if stop_event.is_set():
                        break
            except client.exceptions.ApiException as exception:
                if exception.status == 410:
                    log.debug2("Resource age expired, restarting watch %s", kind.kind)
                    resource_version = None
                else:
                    log.info("Unknown ApiException received, re-raising")
                    raise
            except urllib3.exceptions.ReadTimeoutError:
                log.debug4("Watch Socket closed, restarting watch %s", kind.kind)
            except urllib3.exceptions.ProtocolError:
                log.debug2("Invalid Chunk from server, restarting watch %s", kind.kind)

        watch_manager.stop()
        log.debug("Stopped watch for %s", kind.kind)

    ## Implementation Helpers ##################################################

    @staticmethod
    def _setup_client():
        """Create a DynamicClient that will work based on where the controller
        is running
        """
        # Try in-cluster config
        try:
            log.debug2("Running with in-cluster config")

            # Create Empty Config and load in-cluster information
            kube_config = kubernetes.client.Configuration()
            kubernetes.config.load_incluster_config(client_configuration=kube_config)

            # Generate ApiClient and return Openshift DynamicClient
            api_client = kubernetes.client.ApiClient(kube_config)
            return DynamicClient(api_client)

        # Fall back to out-of-cluster config
        except kubernetes.config.ConfigException:
            log.debug2("Running with out-of-cluster config")
            return DynamicClient(kubernetes.config.new_client_from_config())

    def _get_resource_handle(self, kind: WorkloadKind) -> Resource:
        """Get the openshift resource handle for a workload kind"""
        try:
            return self.client.resources.get(
                kind=kind.kind, api_version=kind.api_version
            )
        except (ResourceNotFoundError, ResourceNotUniqueError) as err:
            raise StoreFetchError(
                f"No unique resource found for {kind.api_version}/{kind.kind}"
            ) from err
