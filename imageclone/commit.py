"""
The commit coordinator writes a rewritten workload back to the store and
classifies the outcome
"""

# Standard
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence

# First Party
import alog

# Local
from .exceptions import (
    StoreFetchError,
    StoreUpdateError,
    VersionConflict,
    WorkloadNotFound,
)
from .store import StoreBase
from .workload import Container, Workload

log = alog.use_channel("COMMIT")


class CommitOutcome(Enum):
    """Possible results of a single commit attempt"""

    COMMITTED = "Committed"
    CONFLICT_RETRY = "ConflictRetry"
    NOT_FOUND = "NotFound"
    FAILED = "Failed"


@dataclass
class CommitResult:
    outcome: CommitOutcome
    error: Optional[Exception] = None


class CommitCoordinator:
    """Applies rewritten containers to a snapshot and submits it under
    optimistic concurrency
    """

    def __init__(self, store: StoreBase):
        self.store = store

    def commit(
        self,
        workload: Workload,
        containers: Sequence[Container],
    ) -> CommitResult:
        """Submit the workload with the given containers, tagged with the
        snapshot's version token

        Args:
            workload:  Workload
                The snapshot the containers were planned from
            containers:  Sequence[Container]
                The full rewritten container list

        Returns:
            result:  CommitResult
                COMMITTED on success, CONFLICT_RETRY if another writer got
                there first, NOT_FOUND if the object is gone, and FAILED with
                the error for anything else
        """
        updated = workload.with_containers(containers)
        try:
            self.store.update(updated)
        except VersionConflict as err:
            log.debug("Version conflict committing [%s]: %s", workload.id, err)
            return CommitResult(CommitOutcome.CONFLICT_RETRY)
        except WorkloadNotFound:
            log.debug("Workload [%s] deleted before commit", workload.id)
            return CommitResult(CommitOutcome.NOT_FOUND)
        except (StoreUpdateError, StoreFetchError) as err:
            return CommitResult(CommitOutcome.FAILED, err)

        log.debug2("Committed [%s]", workload.id)
        return CommitResult(CommitOutcome.COMMITTED)
