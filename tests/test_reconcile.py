"""
Tests for the ImageCloneReconciler
"""

# Standard
from unittest import mock
import threading

# Third Party
from urllib3.exceptions import MaxRetryError
import pytest

# Local
from imageclone.admission import AdmissionFilter
from imageclone.credentials import (
    Credentials,
    KubernetesSecretCredentialProvider,
    StaticCredentialProvider,
)
from imageclone.exceptions import (
    CredentialResolutionError,
    StoreFetchError,
    StoreUpdateError,
    VersionConflict,
)
from imageclone.reconcile import ImageCloneReconciler, ReconcileStatus
from imageclone.store import DryRunStore
from imageclone.test_helpers.helpers import (
    TEST_NAMESPACE,
    TEST_WORKLOAD_NAME,
    BlockingMirrorClient,
    FailOnce,
    MockStore,
    RecordingMirrorClient,
    get_images,
    make_daemonset,
    make_deployment,
)
from imageclone.workload import DAEMONSET, DEPLOYMENT

## Helpers #####################################################################


def make_reconciler(
    store,
    mirror_client=None,
    credential_provider=None,
    kind=DEPLOYMENT,
    **kwargs,
):
    return ImageCloneReconciler(
        kind,
        store,
        credential_provider or StaticCredentialProvider(),
        mirror_client or RecordingMirrorClient(),
        **kwargs,
    )


def stored_images(store, kind="Deployment", namespace=TEST_NAMESPACE):
    return get_images(store.get_manifest(kind, namespace, TEST_WORKLOAD_NAME))


def stored_version(store, kind="Deployment", namespace=TEST_NAMESPACE):
    manifest = store.get_manifest(kind, namespace, TEST_WORKLOAD_NAME)
    return manifest["metadata"]["resourceVersion"]


## Happy path ##################################################################


def test_reconcile_rewrites_single_image():
    """Make sure a plain image is cloned and the workload rewritten"""
    store = MockStore([make_deployment(images=["nginx:1.21"])])
    mirror_client = RecordingMirrorClient()
    reconciler = make_reconciler(store, mirror_client)
    fetched_version = stored_version(store)

    result = reconciler.reconcile(TEST_NAMESPACE, TEST_WORKLOAD_NAME)

    assert result.status == ReconcileStatus.SUCCESS
    assert not result.requeue
    assert mirror_client.copies == [("nginx:1.21", "imageclone/nginx_1.21")]
    assert stored_images(store) == ["imageclone/nginx_1.21"]
    assert store.update.call_count == 1

    # The write carries the version that was read
    (updated,) = store.update.call_args[0]
    assert updated.resource_version == fetched_version
    assert stored_version(store) != fetched_version


def test_reconcile_daemonset():
    """Make sure the same algorithm serves daemonsets"""
    store = MockStore([make_daemonset(images=["fluentd:v1", "redis"])])
    mirror_client = RecordingMirrorClient()
    reconciler = make_reconciler(store, mirror_client, kind=DAEMONSET)

    result = reconciler.reconcile(TEST_NAMESPACE, TEST_WORKLOAD_NAME)

    assert result.status == ReconcileStatus.SUCCESS
    assert stored_images(store, kind="DaemonSet") == [
        "imageclone/fluentd_v1",
        "imageclone/redis",
    ]


def test_reconcile_partially_mirrored():
    """Make sure only the unmirrored image is cloned"""
    store = MockStore(
        [make_deployment(images=["imageclone/envoy_1.0", "redis:7", "busybox"])]
    )
    mirror_client = RecordingMirrorClient()
    reconciler = make_reconciler(store, mirror_client)

    result = reconciler.reconcile(TEST_NAMESPACE, TEST_WORKLOAD_NAME)

    assert result.status == ReconcileStatus.SUCCESS
    assert mirror_client.copies == [
        ("redis:7", "imageclone/redis_7"),
        ("busybox", "imageclone/busybox"),
    ]
    assert stored_images(store) == [
        "imageclone/envoy_1.0",
        "imageclone/redis_7",
        "imageclone/busybox",
    ]


def test_reconcile_already_mirrored_is_noop():
    """Make sure a fully mirrored workload causes no copies and no writes"""
    store = MockStore([make_deployment(images=["imageclone/nginx_1.21"])])
    mirror_client = RecordingMirrorClient()
    reconciler = make_reconciler(store, mirror_client)

    result = reconciler.reconcile(TEST_NAMESPACE, TEST_WORKLOAD_NAME)

    assert result.status == ReconcileStatus.SUCCESS
    assert mirror_client.attempts == []
    store.update.assert_not_called()


def test_reconcile_twice_is_idempotent():
    """Make sure a second pass over a reconciled workload does nothing"""
    store = MockStore([make_deployment(images=["nginx:1.21"])])
    mirror_client = RecordingMirrorClient()
    reconciler = make_reconciler(store, mirror_client)

    reconciler.reconcile(TEST_NAMESPACE, TEST_WORKLOAD_NAME)
    result = reconciler.reconcile(TEST_NAMESPACE, TEST_WORKLOAD_NAME)

    assert result.status == ReconcileStatus.SUCCESS
    assert len(mirror_client.copies) == 1
    assert store.update.call_count == 1


def test_reconcile_passes_credentials():
    """Make sure source and mirror credentials are both resolved"""
    source_creds = Credentials("quay.io", "src-user", "src-pass")
    dest_creds = Credentials("docker.io", "dst-user", "dst-pass")
    store = MockStore([make_deployment(images=["quay.io/org/app:v1"])])
    mirror_client = RecordingMirrorClient()
    reconciler = make_reconciler(
        store,
        mirror_client,
        credential_provider=StaticCredentialProvider([source_creds, dest_creds]),
    )

    result = reconciler.reconcile(TEST_NAMESPACE, TEST_WORKLOAD_NAME)

    assert result.status == ReconcileStatus.SUCCESS
    assert mirror_client.credentials == [(source_creds, dest_creds)]


## Admission ###################################################################


def test_reconcile_excluded_namespace():
    """Make sure kube-system workloads are never fetched"""
    store = MockStore([make_deployment(namespace="kube-system")])
    mirror_client = RecordingMirrorClient()
    reconciler = make_reconciler(store, mirror_client)

    result = reconciler.reconcile("kube-system", TEST_WORKLOAD_NAME)

    assert result.status == ReconcileStatus.SUCCESS
    store.get.assert_not_called()
    store.update.assert_not_called()
    assert mirror_client.attempts == []


def test_reconcile_custom_admission_filter():
    store = MockStore([make_deployment()])
    reconciler = make_reconciler(
        store, admission_filter=AdmissionFilter([TEST_NAMESPACE])
    )
    assert (
        reconciler.reconcile(TEST_NAMESPACE, TEST_WORKLOAD_NAME).status
        == ReconcileStatus.SUCCESS
    )
    store.get.assert_not_called()


## Fetch failures ##############################################################


def test_reconcile_missing_workload():
    """Make sure a workload that no longer exists is a benign success"""
    store = MockStore()
    reconciler = make_reconciler(store)
    result = reconciler.reconcile(TEST_NAMESPACE, "not-there")
    assert result.status == ReconcileStatus.SUCCESS
    store.update.assert_not_called()


def test_reconcile_fetch_error():
    """Make sure a store read failure is reported without any copies"""
    store = MockStore([make_deployment()], get_fail=StoreFetchError)
    mirror_client = RecordingMirrorClient()
    reconciler = make_reconciler(store, mirror_client)

    result = reconciler.reconcile(TEST_NAMESPACE, TEST_WORKLOAD_NAME)

    assert result.status == ReconcileStatus.ERROR
    assert isinstance(result.exception, StoreFetchError)
    assert result.requeue
    assert mirror_client.attempts == []


## Copy failures ###############################################################


def test_reconcile_copy_failure_mid_list():
    """Make sure a failed copy stops the pass before any write and keeps the
    copies that already finished
    """
    store = MockStore([make_deployment(images=["nginx:1.21", "redis:7", "busybox"])])
    mirror_client = RecordingMirrorClient(fail_sources=["redis:7"])
    reconciler = make_reconciler(store, mirror_client)

    result = reconciler.reconcile(TEST_NAMESPACE, TEST_WORKLOAD_NAME)

    assert result.status == ReconcileStatus.ERROR
    assert mirror_client.copies == [("nginx:1.21", "imageclone/nginx_1.21")]
    assert [source for source, _ in mirror_client.attempts] == ["nginx:1.21", "redis:7"]
    store.update.assert_not_called()
    assert stored_images(store) == ["nginx:1.21", "redis:7", "busybox"]


def test_reconcile_credential_failure():
    """Make sure a credential resolution failure stops before copying"""
    store = MockStore([make_deployment()])
    mirror_client = RecordingMirrorClient()
    credential_provider = mock.Mock()
    credential_provider.resolve_credentials.side_effect = CredentialResolutionError(
        "bad secret", image="nginx:1.21"
    )
    reconciler = make_reconciler(
        store, mirror_client, credential_provider=credential_provider
    )

    result = reconciler.reconcile(TEST_NAMESPACE, TEST_WORKLOAD_NAME)

    assert result.status == ReconcileStatus.ERROR
    assert isinstance(result.exception, CredentialResolutionError)
    assert mirror_client.attempts == []
    store.update.assert_not_called()


def test_reconcile_secret_read_connection_failure():
    """Make sure an unreachable API server during credential lookup ends the
    reconcile with a credential error
    """
    store = MockStore([make_deployment()])
    mirror_client = RecordingMirrorClient()
    core_api = mock.Mock()
    core_api.read_namespaced_secret.side_effect = MaxRetryError(
        None, "/api/v1/namespaces", reason="Connection refused"
    )
    credential_provider = KubernetesSecretCredentialProvider(
        secret_names=["regcred"], core_api=core_api
    )
    reconciler = make_reconciler(
        store, mirror_client, credential_provider=credential_provider
    )

    result = reconciler.reconcile(TEST_NAMESPACE, TEST_WORKLOAD_NAME)

    assert result.status == ReconcileStatus.ERROR
    assert isinstance(result.exception, CredentialResolutionError)
    assert mirror_client.attempts == []
    store.update.assert_not_called()


## Commit failures #############################################################


def test_reconcile_conflict_then_success():
    """Make sure a version conflict triggers a fresh fetch and re-plan"""
    store = MockStore(
        [make_deployment(images=["nginx:1.21"])],
        update_fail=FailOnce(VersionConflict),
    )
    mirror_client = RecordingMirrorClient()
    reconciler = make_reconciler(store, mirror_client)

    result = reconciler.reconcile(TEST_NAMESPACE, TEST_WORKLOAD_NAME)

    assert result.status == ReconcileStatus.SUCCESS
    assert store.get.call_count == 2
    assert store.update.call_count == 2
    assert stored_images(store) == ["imageclone/nginx_1.21"]


def test_reconcile_conflict_with_concurrent_change():
    """Make sure a concurrent writer's change is picked up on the retry"""

    def concurrent_writer(mock_store, _):
        if mock_store.update.call_count == 1:
            mock_store.apply(make_deployment(images=["nginx:1.21", "redis:7"]))

    store = MockStore(
        [make_deployment(images=["nginx:1.21"])],
        before_update=concurrent_writer,
    )
    mirror_client = RecordingMirrorClient()
    reconciler = make_reconciler(store, mirror_client)

    result = reconciler.reconcile(TEST_NAMESPACE, TEST_WORKLOAD_NAME)

    assert result.status == ReconcileStatus.SUCCESS
    assert stored_images(store) == ["imageclone/nginx_1.21", "imageclone/redis_7"]


def test_reconcile_conflict_retries_exhausted():
    """Make sure persistent conflicts hand the key back for a requeue"""
    store = MockStore([make_deployment()], update_fail=VersionConflict)
    reconciler = make_reconciler(store, conflict_retries=2)

    result = reconciler.reconcile(TEST_NAMESPACE, TEST_WORKLOAD_NAME)

    assert result.status == ReconcileStatus.REQUEUE
    assert result.requeue
    assert store.get.call_count == 3
    assert store.update.call_count == 3


def test_reconcile_deleted_before_update():
    """Make sure a workload deleted mid-reconcile is a benign success"""

    def delete_it(mock_store, workload):
        mock_store.delete(workload.kind.kind, workload.namespace, workload.name)

    store = MockStore([make_deployment()], before_update=delete_it)
    reconciler = make_reconciler(store)

    result = reconciler.reconcile(TEST_NAMESPACE, TEST_WORKLOAD_NAME)

    assert result.status == ReconcileStatus.SUCCESS
    assert store.get_manifest("Deployment", TEST_NAMESPACE, TEST_WORKLOAD_NAME) is None


def test_reconcile_update_error():
    store = MockStore([make_deployment()], update_fail=StoreUpdateError)
    reconciler = make_reconciler(store)
    result = reconciler.reconcile(TEST_NAMESPACE, TEST_WORKLOAD_NAME)
    assert result.status == ReconcileStatus.ERROR
    assert isinstance(result.exception, StoreUpdateError)


## Cancellation ################################################################


def test_reconcile_cancelled_before_start():
    store = MockStore([make_deployment()])
    cancel_event = threading.Event()
    cancel_event.set()
    reconciler = make_reconciler(store)

    result = reconciler.reconcile(TEST_NAMESPACE, TEST_WORKLOAD_NAME, cancel_event)

    assert result.status == ReconcileStatus.REQUEUE
    store.get.assert_not_called()


@pytest.mark.timeout(5)
def test_reconcile_cancelled_during_copy():
    """Make sure cancelling an in-flight copy writes nothing"""
    store = MockStore([make_deployment()])
    mirror_client = BlockingMirrorClient()
    cancel_event = threading.Event()
    reconciler = make_reconciler(store, mirror_client)
    results = []

    thread = threading.Thread(
        target=lambda: results.append(
            reconciler.reconcile(TEST_NAMESPACE, TEST_WORKLOAD_NAME, cancel_event)
        )
    )
    thread.start()
    assert mirror_client.started.wait(2)
    cancel_event.set()
    thread.join()

    assert results[0].status == ReconcileStatus.REQUEUE
    store.update.assert_not_called()
    assert stored_images(store) == ["nginx:1.21"]


def test_reconcile_cancelled_after_copy():
    """Make sure a cancel between the copies and the commit skips the write"""
    store = MockStore([make_deployment()])
    cancel_event = threading.Event()
    mirror_client = RecordingMirrorClient(
        on_copy=lambda *_: cancel_event.set(),
    )
    reconciler = make_reconciler(store, mirror_client)

    result = reconciler.reconcile(TEST_NAMESPACE, TEST_WORKLOAD_NAME, cancel_event)

    assert result.status == ReconcileStatus.REQUEUE
    assert len(mirror_client.copies) == 1
    store.update.assert_not_called()


## safe_reconcile ##############################################################


def test_safe_reconcile_catches_unexpected_errors():
    """Make sure an unexpected error still produces a result"""
    store = MockStore([make_deployment()], get_fail=ValueError("unexpected"))
    reconciler = make_reconciler(store)

    result = reconciler.safe_reconcile(TEST_NAMESPACE, TEST_WORKLOAD_NAME)

    assert result.status == ReconcileStatus.ERROR
    assert isinstance(result.exception, ValueError)


def test_generate_id_unique():
    ids = {ImageCloneReconciler.generate_id() for _ in range(10)}
    assert len(ids) == 10
    assert all(len(reconcile_id) == 22 for reconcile_id in ids)


def test_reconcilers_share_store_by_kind():
    """Make sure reconcilers for different kinds only touch their own kind"""
    store = DryRunStore(
        [make_deployment(images=["nginx:1.21"]), make_daemonset(images=["redis"])]
    )
    deployment_reconciler = make_reconciler(store)

    deployment_reconciler.reconcile(TEST_NAMESPACE, TEST_WORKLOAD_NAME)

    assert stored_images(store) == ["imageclone/nginx_1.21"]
    assert stored_images(store, kind="DaemonSet") == ["redis"]
