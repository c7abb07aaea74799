"""
This module holds common helper functions for making testing easy
"""

# Standard
from contextlib import contextmanager
from typing import Iterable, List, Optional
from unittest import mock
import inspect
import os
import threading

# First Party
import alog

# Local
from imageclone.config import library_config as config_detail_dict
from imageclone.exceptions import MirrorCopyError
from imageclone.registry import RegistryMirrorClientBase
from imageclone.store import DryRunStore

log = alog.use_channel("TEST")


def configure_logging():
    alog.configure(
        os.environ.get("LOG_LEVEL", "off"),
        os.environ.get("LOG_FILTERS", ""),
        formatter="json"
        if os.environ.get("LOG_JSON", "").lower() == "true"
        else "pretty",
        thread_id=os.environ.get("LOG_THREAD_ID", "").lower() == "true",
    )


configure_logging()

TEST_NAMESPACE = "test"
TEST_WORKLOAD_NAME = "test-workload"
TEST_MIRROR_PREFIX = "imageclone"


## Manifests ###################################################################


def make_workload_manifest(
    kind: str = "Deployment",
    name: str = TEST_WORKLOAD_NAME,
    namespace: str = TEST_NAMESPACE,
    images: Iterable[str] = ("nginx:1.21",),
    api_version: str = "apps/v1",
) -> dict:
    """Make a minimal workload manifest with one container per image. The
    containers are named c0, c1, ...
    """
    return {
        "apiVersion": api_version,
        "kind": kind,
        "metadata": {"name": name, "namespace": namespace},
        "spec": {
            "template": {
                "spec": {
                    "containers": [
                        {"name": f"c{i}", "image": image}
                        for i, image in enumerate(images)
                    ]
                }
            }
        },
    }


def make_deployment(*args, **kwargs) -> dict:
    return make_workload_manifest("Deployment", *args, **kwargs)


def make_daemonset(*args, **kwargs) -> dict:
    return make_workload_manifest("DaemonSet", *args, **kwargs)


def get_images(manifest: dict) -> List[str]:
    return [
        container["image"]
        for container in manifest["spec"]["template"]["spec"]["containers"]
    ]


## Config ######################################################################


@contextmanager
def library_config(**config_overrides):
    """This context manager sets library config values temporarily and reverts
    them on completion
    """
    # Override the configs and hang onto the old values
    old_vals = {}
    for key, val in config_overrides.items():
        if key in config_detail_dict:
            old_vals[key] = config_detail_dict[key]
        config_detail_dict[key] = val

    # Yield to the context
    try:
        yield
    finally:
        # Revert to the old values
        for key in config_overrides:
            if key in old_vals:
                config_detail_dict[key] = old_vals[key]
            else:
                del config_detail_dict[key]


## Failure injection ###########################################################


def get_failable_method(fail_flag, method, failure_return=False):
    log.debug4(
        "Setting up failable mock of [%s] with fail flag: %s", str(method), fail_flag
    )

    def failable_method(*args, **kwargs):
        log.debug4(
            "Running failable mock of [%s] with fail flag: %s", str(method), fail_flag
        )
        if isinstance(fail_flag, Exception) or (
            inspect.isclass(fail_flag) and issubclass(fail_flag, Exception)
        ):
            log.debug4("Raising in failable mock")
            raise fail_flag
        if callable(fail_flag):
            log.debug4("Calling callable fail flag")
            res = fail_flag(*args, **kwargs)
            if res is not None:
                return res
        elif fail_flag == "assert":
            log.debug4("Asserting in failable mock")
            raise AssertionError(f"You told me to fail {method}!")
        elif fail_flag:
            log.debug4("Returning %s", failure_return)
            return failure_return
        log.debug4("Passing through (%s, **%s)", args, kwargs)
        return method(*args, **kwargs)

    return failable_method


class FailOnce:
    """Helper callable that will fail once on the N'th call"""

    def __init__(self, fail_val, fail_number=1):
        self.call_count = 0
        self.fail_number = fail_number
        self.fail_val = fail_val

    def __call__(self, *_, **__):
        self.call_count += 1
        if self.call_count == self.fail_number:
            log.debug("Failing on call %d with %s", self.call_count, self.fail_val)
            if isinstance(self.fail_val, type) and issubclass(self.fail_val, Exception):
                raise self.fail_val("Raising!")
            return self.fail_val
        log.debug("Not failing on call %d", self.call_count)
        return None


class MockStore(DryRunStore):
    """The MockStore wraps a standard DryRunStore and adds configuration
    options to simulate failures in each of its operations. The get and update
    methods are mocks so tests can count calls.
    """

    def __init__(
        self,
        resources=None,
        get_fail=False,
        update_fail=False,
        before_update=None,
        auto_enable=True,
    ):
        """
        Args:
            resources:  Optional[List[dict]]
                Manifests that already exist in the cluster
            get_fail:  Any
                Fail flag for get (exception type/instance or callable)
            update_fail:  Any
                Fail flag for update
            before_update:  Optional[Callable[[MockStore, Workload], None]]
                Hook run before each update attempt. Useful to simulate a
                concurrent writer.
        """
        super().__init__(resources=resources)
        self.get_fail = get_fail
        self.update_fail = update_fail
        self.before_update = before_update
        if auto_enable:
            self.enable_mocks()

    def enable_mocks(self):
        """Turn the mocks on"""
        self.get = mock.Mock(
            side_effect=get_failable_method(self.get_fail, super().get)
        )
        self.update = mock.Mock(
            side_effect=get_failable_method(self.update_fail, self._update_with_hook)
        )

    def _update_with_hook(self, workload):
        if self.before_update is not None:
            self.before_update(self, workload)
        return DryRunStore.update(self, workload)


class RecordingMirrorClient(RegistryMirrorClientBase):
    """Mirror client that records every copy and can fail for chosen sources"""

    def __init__(
        self,
        fail_sources: Optional[Iterable[str]] = None,
        on_copy=None,
    ):
        self.fail_sources = set(fail_sources or [])
        self.on_copy = on_copy
        self.copies = []
        self.attempts = []
        self.credentials = []

    def copy(
        self,
        source,
        destination,
        source_credentials=None,
        destination_credentials=None,
        cancel_event=None,
    ):
        self.attempts.append((source, destination))
        if self.on_copy is not None:
            self.on_copy(source, destination, cancel_event)
        if source in self.fail_sources:
            raise MirrorCopyError(
                "Simulated copy failure", source=source, destination=destination
            )
        self.copies.append((source, destination))
        self.credentials.append((source_credentials, destination_credentials))


class BlockingMirrorClient(RecordingMirrorClient):
    """Mirror client whose copies block until released or cancelled"""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.started = threading.Event()
        self.release = threading.Event()

    def copy(self, source, destination, *args, cancel_event=None, **kwargs):
        self.started.set()
        while not self.release.wait(0.01):
            if cancel_event is not None and cancel_event.is_set():
                raise MirrorCopyError(
                    "Copy cancelled", source=source, destination=destination
                )
        super().copy(source, destination, *args, cancel_event=cancel_event, **kwargs)
