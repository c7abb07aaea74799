"""
Package exports
"""

# Local
from . import config, watch_manager
from .admission import AdmissionFilter
from .commit import CommitCoordinator, CommitOutcome, CommitResult
from .credentials import (
    CredentialProviderBase,
    Credentials,
    KubernetesSecretCredentialProvider,
    StaticCredentialProvider,
)
from .exceptions import assert_config
from .mirror import RewritePlan, is_mirrored, mirror_reference, plan_rewrites
from .reconcile import ImageCloneReconciler, ReconciliationResult, ReconcileStatus
from .registry import (
    DryRunMirrorClient,
    RegistryMirrorClientBase,
    SkopeoMirrorClient,
)
from .store import DryRunStore, KubernetesStore, StoreBase
from .workload import DAEMONSET, DEPLOYMENT, Container, Workload, WorkloadId
