"""
The WatchManager drives reconciliation: it watches every registered kind,
funnels the resulting keys through a single WorkQueue, and runs a pool of
worker threads that call the matching reconciler
"""

# Standard
from typing import Dict, List, Optional
import threading

# First Party
import alog

# Local
from .. import config
from ..reconcile import ImageCloneReconciler
from ..store import StoreBase
from .threads import WatchThread, WorkerThread
from .work_queue import WorkQueue

log = alog.use_channel("WATCHMGR")


class WatchManager:
    """Runs the watch and worker threads for a set of reconcilers"""

    def __init__(
        self,
        reconcilers: List[ImageCloneReconciler],
        store: StoreBase,
        workers: Optional[int] = None,
        namespace_list: Optional[List[str]] = None,
        work_queue: Optional[WorkQueue] = None,
    ):
        """
        Args:
            reconcilers:  List[ImageCloneReconciler]
                One reconciler per watched kind
            store:  StoreBase
                The store to watch
            workers:  Optional[int]
                Number of worker threads. Defaults to config.workers
            namespace_list:  Optional[List[str]]
                Namespaces to watch. Defaults to the comma separated
                config.watch_namespace, or all namespaces if that is empty
            work_queue:  Optional[WorkQueue]
                Queue override
        """
        self.reconcilers: Dict[str, ImageCloneReconciler] = {}
        for reconciler in reconcilers:
            kind_name = reconciler.kind.kind
            if kind_name in self.reconcilers:
                raise ValueError(f"Duplicate reconciler for kind {kind_name}")
            self.reconcilers[kind_name] = reconciler

        self.store = store
        self.num_workers = config.workers if workers is None else workers
        self.work_queue = work_queue or WorkQueue()

        self.namespace_list = namespace_list or []
        if not namespace_list and config.watch_namespace != "":
            self.namespace_list = [
                namespace.strip()
                for namespace in config.watch_namespace.split(",")
                if namespace.strip()
            ]

        # Shared by all threads and handed to each reconcile as its
        # cancellation signal
        self.shutdown = threading.Event()

        self.watch_threads: List[WatchThread] = []
        for kind_name, reconciler in self.reconcilers.items():
            if len(self.namespace_list) == 0 or "*" in self.namespace_list:
                self.watch_threads.append(
                    self._make_watch_thread(kind_name, reconciler)
                )
            else:
                for namespace in self.namespace_list:
                    self.watch_threads.append(
                        self._make_watch_thread(kind_name, reconciler, namespace)
                    )

        self.worker_threads: List[WorkerThread] = [
            WorkerThread(index, self.reconcilers, self.shutdown, self.work_queue)
            for index in range(self.num_workers)
        ]

    ## Interface ###############################################################

    def watch(self) -> bool:
        """Start all threads

        Returns:
            success:  bool
                True if the threads were started, False if the manager was
                already stopped
        """
        log.info("Starting WatchManager: %s", self)
        if self.shutdown.is_set():
            return False

        for worker_thread in self.worker_threads:
            worker_thread.start_thread()
        for watch_thread in self.watch_threads:
            watch_thread.start_thread()
        return True

    def wait(self):
        """Wait for shutdown to be signaled"""
        self.shutdown.wait()

    def stop(self, timeout: Optional[float] = None):
        """Signal all threads to stop and wait for in-flight reconciles to
        finish

        Args:
            timeout:  Optional[float]
                Max seconds to wait for each thread
        """
        log.info("Stopping WatchManager: %s", self)
        self.shutdown.set()
        self.work_queue.shut_down()
        for thread in self.worker_threads + self.watch_threads:
            if thread.is_alive():
                thread.join(timeout)

    ## Helpers #################################################################

    def _make_watch_thread(
        self,
        kind_name: str,
        reconciler: ImageCloneReconciler,
        namespace: Optional[str] = None,
    ) -> WatchThread:
        log.debug3("Adding watch for %s in [%s]", kind_name, namespace or "*")
        return WatchThread(
            kind_name,
            reconciler,
            self.store,
            self.shutdown,
            self.work_queue,
            namespace=namespace,
        )

    def __str__(self):
        return "WatchManager[{}]".format(",".join(self.reconcilers))
