"""
The ImageCloneReconciler runs a single reconciliation of one workload: it
checks admission, fetches the workload fresh, plans image rewrites, clones each
pending image into the mirror, and commits the rewritten workload.
"""

# Standard
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional
import base64
import threading
import uuid

# First Party
import alog

# Local
from . import config
from .admission import AdmissionFilter
from .commit import CommitCoordinator, CommitOutcome
from .credentials import CredentialProviderBase
from .exceptions import (
    CredentialResolutionError,
    MirrorCopyError,
    StoreFetchError,
    WorkloadNotFound,
)
from .log_format import reconcile_context
from .mirror import ImageRewrite, plan_rewrites
from .registry import RegistryMirrorClientBase
from .store import StoreBase
from .workload import WorkloadId, WorkloadKind

log = alog.use_channel("RECONCILE")


## Data models #################################################################


class ReconcileStatus(Enum):
    """Outcome reported back to the driver"""

    SUCCESS = "Success"
    REQUEUE = "Requeue"
    ERROR = "Error"


@dataclass
class ReconciliationResult:
    """ReconciliationResult is the result of a single reconciliation"""

    status: ReconcileStatus
    # The error that terminated the reconciliation, if any
    exception: Optional[Exception] = None

    @property
    def requeue(self) -> bool:
        return self.status != ReconcileStatus.SUCCESS


## ImageCloneReconciler ########################################################


class ImageCloneReconciler:
    """Reconciles workloads of one kind. One instance is registered with the
    driver per watched kind; all collaborators are injected.
    """

    def __init__(  # pylint: disable=too-many-arguments
        self,
        kind: WorkloadKind,
        store: StoreBase,
        credential_provider: CredentialProviderBase,
        mirror_client: RegistryMirrorClientBase,
        admission_filter: Optional[AdmissionFilter] = None,
        mirror_prefix: Optional[str] = None,
        conflict_retries: Optional[int] = None,
    ):
        """
        Args:
            kind:  WorkloadKind
                The kind of workload this reconciler handles
            store:  StoreBase
                The authoritative store for workloads
            credential_provider:  CredentialProviderBase
                Resolves registry credentials for source and mirror images
            mirror_client:  RegistryMirrorClientBase
                Performs the image copies
            admission_filter:  Optional[AdmissionFilter]
                Namespace filter. Defaults to the configured exclusions
            mirror_prefix:  Optional[str]
                Prefix for mirror references. Defaults to config.mirror_prefix
            conflict_retries:  Optional[int]
                Number of fresh re-fetches after a version conflict before
                handing the key back to the driver. Defaults to
                config.conflict_retries
        """
        self.kind = kind
        self.store = store
        self.credential_provider = credential_provider
        self.mirror_client = mirror_client
        self.admission_filter = admission_filter or AdmissionFilter()
        self.mirror_prefix = mirror_prefix or config.mirror_prefix
        self.conflict_retries = (
            config.conflict_retries if conflict_retries is None else conflict_retries
        )
        self.commit_coordinator = CommitCoordinator(store)

    ## Reconciliation ##########################################################

    @alog.logged_function(log.debug)
    @alog.timed_function(log.debug, "Reconcile finished in: ")
    def reconcile(
        self,
        namespace: str,
        name: str,
        cancel_event: Optional[threading.Event] = None,
    ) -> ReconciliationResult:
        """This is the main entrypoint for reconciliations. The path is:

            1. Check the namespace against the admission filter
            2. Fetch the workload fresh from the store
            3. Plan the image rewrites
            4. Clone every pending image, in container order
            5. Commit the rewritten workload, starting over from 2 on a
               version conflict

        Args:
            namespace:  str
                The namespace of the workload
            name:  str
                The name of the workload
            cancel_event:  Optional[threading.Event]
                When set, the reconciliation stops before writing anything

        Returns:
            result:  ReconciliationResult
                The result of the reconcile
        """
        workload_id = WorkloadId(self.kind.kind, namespace, name)
        with reconcile_context(workload_id, self.generate_id()):
            return self._reconcile(workload_id, cancel_event)

    def safe_reconcile(
        self,
        namespace: str,
        name: str,
        cancel_event: Optional[threading.Event] = None,
    ) -> ReconciliationResult:
        """This function calls out to reconcile but catches any errors thrown.
        This guarantees a result which the driver needs to decide on requeue.
        """
        try:
            return self.reconcile(namespace, name, cancel_event)
        except Exception as exc:  # pylint: disable=broad-except
            log.warning(
                "Handling caught error reconciling %s/%s/%s: %s",
                self.kind.kind,
                namespace,
                name,
                exc,
                exc_info=True,
            )
            return ReconciliationResult(ReconcileStatus.ERROR, exception=exc)

    @classmethod
    def generate_id(cls) -> str:
        """Generates a unique human readable id for this reconciliation

        Returns:
            id: str
                A unique base32 encoded id
        """
        uuid4 = uuid.uuid4()
        base32_str = base64.b32encode(uuid4.bytes).decode("utf-8")
        return base32_str[:22]

    ## Implementation ##########################################################

    def _reconcile(
        self,
        workload_id: WorkloadId,
        cancel_event: Optional[threading.Event],
    ) -> ReconciliationResult:
        if not self.admission_filter.admit(workload_id.namespace):
            log.info(
                "Ignoring %s in excluded namespace [%s]",
                workload_id,
                workload_id.namespace,
            )
            return ReconciliationResult(ReconcileStatus.SUCCESS)

        for attempt in range(self.conflict_retries + 1):
            if self._cancelled(cancel_event):
                log.info("Reconcile of %s cancelled before fetch", workload_id)
                return ReconciliationResult(ReconcileStatus.REQUEUE)

            # Fetch
            try:
                workload = self.store.get(
                    self.kind, workload_id.namespace, workload_id.name
                )
            except WorkloadNotFound:
                log.info("Could not find %s. Nothing to reconcile", workload_id)
                return ReconciliationResult(ReconcileStatus.SUCCESS)
            except StoreFetchError as err:
                log.error("Unable to fetch %s: %s", workload_id, err)
                return ReconciliationResult(ReconcileStatus.ERROR, exception=err)

            # Plan
            plan = plan_rewrites(workload.containers, self.mirror_prefix)
            for container in plan.already_mirrored:
                log.info(
                    "Already using cloned image on %s: container [%s] image [%s]",
                    workload_id,
                    container.name,
                    container.image,
                )
            if not plan.changed:
                log.debug("All images on %s are already cloned", workload_id)
                return ReconciliationResult(ReconcileStatus.SUCCESS)

            # Mirror
            try:
                self._mirror_images(workload_id, plan.rewrites, cancel_event)
            except (CredentialResolutionError, MirrorCopyError) as err:
                if self._cancelled(cancel_event):
                    log.info("Reconcile of %s cancelled during clone", workload_id)
                    return ReconciliationResult(ReconcileStatus.REQUEUE)
                return ReconciliationResult(ReconcileStatus.ERROR, exception=err)

            if self._cancelled(cancel_event):
                log.info("Reconcile of %s cancelled before commit", workload_id)
                return ReconciliationResult(ReconcileStatus.REQUEUE)

            # Commit
            result = self.commit_coordinator.commit(workload, plan.containers)
            if result.outcome == CommitOutcome.COMMITTED:
                log.info(
                    "Updated %s to use %d cloned image(s)",
                    workload_id,
                    len(plan.rewrites),
                )
                return ReconciliationResult(ReconcileStatus.SUCCESS)
            if result.outcome == CommitOutcome.NOT_FOUND:
                log.info("%s was deleted before it could be updated", workload_id)
                return ReconciliationResult(ReconcileStatus.SUCCESS)
            if result.outcome == CommitOutcome.FAILED:
                log.error("Unable to update %s: %s", workload_id, result.error)
                return ReconciliationResult(
                    ReconcileStatus.ERROR, exception=result.error
                )

            log.info(
                "%s has been updated since getting it (attempt %d/%d)",
                workload_id,
                attempt + 1,
                self.conflict_retries + 1,
            )

        log.info("Conflict retries exhausted for %s. Requeuing", workload_id)
        return ReconciliationResult(ReconcileStatus.REQUEUE)

    def _mirror_images(
        self,
        workload_id: WorkloadId,
        rewrites: List[ImageRewrite],
        cancel_event: Optional[threading.Event],
    ):
        """Clone each pending image in order, stopping on the first failure.
        Clones that already finished are kept.
        """
        for rewrite in rewrites:
            log.info(
                "Exchanging container image on %s: container [%s] before [%s] after [%s]",
                workload_id,
                rewrite.container_name,
                rewrite.source,
                rewrite.destination,
            )
            try:
                source_credentials = self.credential_provider.resolve_credentials(
                    rewrite.source
                )
                destination_credentials = self.credential_provider.resolve_credentials(
                    rewrite.destination
                )
            except CredentialResolutionError as err:
                log.error(
                    "Unable to resolve credentials for %s: [%s] -> [%s]: %s",
                    workload_id,
                    rewrite.source,
                    rewrite.destination,
                    err,
                )
                raise

            try:
                self.mirror_client.copy(
                    rewrite.source,
                    rewrite.destination,
                    source_credentials=source_credentials,
                    destination_credentials=destination_credentials,
                    cancel_event=cancel_event,
                )
            except MirrorCopyError as err:
                log.error(
                    "Unable to clone image for %s: [%s] -> [%s]: %s",
                    workload_id,
                    rewrite.source,
                    rewrite.destination,
                    err,
                )
                raise

    @staticmethod
    def _cancelled(cancel_event: Optional[threading.Event]) -> bool:
        return cancel_event is not None and cancel_event.is_set()

    def __str__(self):
        return f"ImageCloneReconciler[{self.kind.kind}]"
