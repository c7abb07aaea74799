"""
Threads used by the WatchManager: one WatchThread per watched kind feeding
the WorkQueue, and a pool of WorkerThreads draining it
"""

# Standard
from typing import Dict, Optional
import threading

# First Party
import alog

# Local
from .. import config
from ..reconcile import ImageCloneReconciler, ReconcileStatus
from ..store import KubeEventType, StoreBase
from ..workload import WorkloadId
from .work_queue import WorkQueue

log = alog.use_channel("WMTHRD")


class ThreadBase(threading.Thread):
    """Base class for the driver threads. All threads of a WatchManager share
    one shutdown event which doubles as the cancellation signal for in-flight
    reconciles.
    """

    def __init__(self, name: str, shutdown: threading.Event, work_queue: WorkQueue):
        super().__init__(name=name, daemon=True)
        self.shutdown = shutdown
        self.work_queue = work_queue

    def start_thread(self):
        """If the thread is not already alive start it"""
        if not self.is_alive():
            log.info("Starting %s: %s", self.__class__.__name__, self.name)
            self.start()

    def should_stop(self) -> bool:
        return self.shutdown.is_set()


class WatchThread(ThreadBase):
    """Streams events for one kind and queues a request for every added or
    modified workload. Failed watches are restarted after a delay.
    """

    def __init__(  # pylint: disable=too-many-arguments
        self,
        kind_name: str,
        reconciler: ImageCloneReconciler,
        store: StoreBase,
        shutdown: threading.Event,
        work_queue: WorkQueue,
        namespace: Optional[str] = None,
        retry_seconds: Optional[float] = None,
    ):
        name = f"watch_thread_{kind_name}"
        if namespace:
            name = name + f"_{namespace}"
        super().__init__(name=name, shutdown=shutdown, work_queue=work_queue)
        self.reconciler = reconciler
        self.store = store
        self.namespace = namespace
        self.retry_seconds = (
            config.watch_retry_seconds if retry_seconds is None else retry_seconds
        )

    def run(self):
        while not self.should_stop():
            try:
                for event in self.store.watch(
                    self.reconciler.kind,
                    namespace=self.namespace,
                    stop_event=self.shutdown,
                ):
                    if event.type == KubeEventType.DELETED:
                        log.debug2("Skipping delete event for %s", event.workload_id)
                        continue
                    log.debug2("Queuing %s (%s)", event.workload_id, event.type.value)
                    self.work_queue.add(event.workload_id)
                    if self.should_stop():
                        break
            except Exception as exc:  # pylint: disable=broad-except
                log.warning(
                    "Watch for %s failed, restarting in %ss: %s",
                    self.reconciler.kind.kind,
                    self.retry_seconds,
                    exc,
                    exc_info=True,
                )
                self.shutdown.wait(self.retry_seconds)
        log.debug("%s stopped", self.name)


class WorkerThread(ThreadBase):
    """Takes keys off the queue and runs the reconciler for their kind"""

    def __init__(
        self,
        index: int,
        reconcilers: Dict[str, ImageCloneReconciler],
        shutdown: threading.Event,
        work_queue: WorkQueue,
    ):
        super().__init__(
            name=f"worker_thread_{index}", shutdown=shutdown, work_queue=work_queue
        )
        self.reconcilers = reconcilers

    def run(self):
        while not self.should_stop():
            workload_id = self.work_queue.get()
            if workload_id is None:
                break
            try:
                self.process(workload_id)
            finally:
                self.work_queue.done(workload_id)
        log.debug("%s stopped", self.name)

    def process(self, workload_id: WorkloadId):
        """Reconcile a single key and apply the requeue policy"""
        reconciler = self.reconcilers.get(workload_id.kind)
        if reconciler is None:
            log.warning("No reconciler registered for %s", workload_id)
            return

        result = reconciler.safe_reconcile(
            workload_id.namespace, workload_id.name, cancel_event=self.shutdown
        )
        if result.status == ReconcileStatus.SUCCESS:
            self.work_queue.forget(workload_id)
            return

        delay = self.work_queue.add_rate_limited(workload_id)
        if result.status == ReconcileStatus.ERROR:
            log.warning(
                "Reconcile of %s failed (%s). Requeuing in %ss",
                workload_id,
                result.exception,
                delay,
            )
        else:
            log.debug("Requeuing %s in %ss", workload_id, delay)
