"""
This is the main entrypoint command for running the controller
"""
# Standard
from typing import Dict, List, Optional
import argparse
import os
import signal

# Third Party
import yaml

# First Party
import alog

# Local
from .. import config
from ..admission import AdmissionFilter
from ..credentials import (
    CredentialProviderBase,
    KubernetesSecretCredentialProvider,
    StaticCredentialProvider,
)
from ..reconcile import ImageCloneReconciler, ReconcileStatus
from ..registry import (
    DryRunMirrorClient,
    RegistryMirrorClientBase,
    SkopeoMirrorClient,
)
from ..store import DryRunStore, KubernetesStore, StoreBase
from ..watch_manager import WatchManager
from ..workload import get_kind
from .base import CmdBase

log = alog.use_channel("MAIN")


class RunControllerCmd(CmdBase):
    __doc__ = __doc__

    ## Interface ##

    def add_subparser(
        self,
        subparsers: argparse._SubParsersAction,
    ) -> argparse.ArgumentParser:
        parser = subparsers.add_parser("run", help=__doc__)
        runtime_args = parser.add_argument_group("Runtime Configuration")
        runtime_args.add_argument(
            "--resource_dir",
            "-r",
            default=None,
            help="(dry run) Path to a directory of yaml files that should exist in the cluster",
        )
        runtime_args.add_argument(
            "--once",
            action="store_true",
            default=False,
            help="(dry run) Reconcile every pre-populated workload once and exit",
        )
        return parser

    def cmd(self, args: argparse.Namespace):
        # Validate args
        assert args.resource_dir is None or (
            config.dry_run and os.path.isdir(args.resource_dir)
        ), "Can only specify --resource_dir with dry run and it must point to a valid directory"
        assert not args.once or config.dry_run, "Can only specify --once with dry run"

        # Parse pre-populated resources if needed
        resources = self._parse_resource_dir(args.resource_dir)

        # Build the collaborators and one reconciler per kind
        store = self._setup_store(resources)
        reconcilers = self._setup_reconcilers(
            store, self._setup_credential_provider(), self._setup_mirror_client()
        )

        if args.once:
            results = self.reconcile_all(store, reconcilers)
            log.info("Reconciled %d workload(s): %s", len(results), results)
            log.info("SHUTTING DOWN")
            return results

        manager = WatchManager(reconcilers, store)

        # Register the signal handler to stop the watches
        def do_stop(*_, **__):  # pragma: no cover
            manager.stop()

        signal.signal(signal.SIGINT, do_stop)
        signal.signal(signal.SIGTERM, do_stop)

        # Run the watch manager
        log.info("Starting Watches")
        if manager.watch():
            manager.wait()
            manager.stop()

        # All done!
        log.info("SHUTTING DOWN")
        return None

    ## Impl ##

    @staticmethod
    def reconcile_all(
        store: DryRunStore,
        reconcilers: List[ImageCloneReconciler],
    ) -> Dict[str, ReconcileStatus]:
        """Synchronously reconcile every stored workload of the watched kinds"""
        results = {}
        for reconciler in reconcilers:
            for workload_id in store.list_ids(reconciler.kind.kind):
                result = reconciler.safe_reconcile(
                    workload_id.namespace, workload_id.name
                )
                results[str(workload_id)] = result.status
        return results

    @staticmethod
    def _parse_resource_dir(resource_dir: Optional[str]):
        """If given, this will parse all yaml files found in the given directory"""
        all_resources = []
        if resource_dir is not None:
            for fname in sorted(os.listdir(resource_dir)):
                if fname.endswith(".yaml") or fname.endswith(".yml"):
                    resource_path = os.path.join(resource_dir, fname)
                    log.debug3("Reading resource file [%s]", resource_path)
                    with open(resource_path, encoding="utf-8") as handle:
                        all_resources.extend(
                            resource
                            for resource in yaml.safe_load_all(handle)
                            if resource
                        )
        return all_resources

    @staticmethod
    def _setup_store(resources: List[dict]) -> StoreBase:
        if config.dry_run:
            log.info("Running DRY RUN")
            return DryRunStore(resources=resources)
        return KubernetesStore()

    @staticmethod
    def _setup_credential_provider() -> CredentialProviderBase:
        if config.dry_run:
            return StaticCredentialProvider()
        return KubernetesSecretCredentialProvider()

    @staticmethod
    def _setup_mirror_client() -> RegistryMirrorClientBase:
        if config.dry_run:
            return DryRunMirrorClient()
        return SkopeoMirrorClient()

    @staticmethod
    def _setup_reconcilers(
        store: StoreBase,
        credential_provider: CredentialProviderBase,
        mirror_client: RegistryMirrorClientBase,
    ) -> List[ImageCloneReconciler]:
        admission_filter = AdmissionFilter()
        reconcilers = []
        for kind_name in config.kinds:
            kind = get_kind(kind_name)
            log.debug("Registering reconciler for %s", kind.kind)
            reconcilers.append(
                ImageCloneReconciler(
                    kind,
                    store,
                    credential_provider,
                    mirror_client,
                    admission_filter=admission_filter,
                )
            )
        return reconcilers
