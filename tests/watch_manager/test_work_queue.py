"""
Tests for the WorkQueue
"""
# Standard
import threading
import time

# Third Party
import pytest

# Local
from imageclone.watch_manager import WorkQueue


def test_add_and_get():
    queue = WorkQueue()
    queue.add("a")
    queue.add("b")
    assert len(queue) == 2
    assert queue.get(timeout=0.1) == "a"
    assert queue.get(timeout=0.1) == "b"
    assert queue.get(timeout=0.01) is None


def test_add_deduplicates():
    """Make sure a key that is already waiting is only queued once"""
    queue = WorkQueue()
    queue.add("a")
    queue.add("a")
    assert len(queue) == 1


def test_key_in_processing_is_parked():
    """Make sure a key re-added while processing is not handed to a second
    consumer until the first one is done
    """
    queue = WorkQueue()
    queue.add("a")
    assert queue.get(timeout=0.1) == "a"

    queue.add("a")
    queue.add("a")
    assert queue.get(timeout=0.01) is None

    queue.done("a")
    assert queue.get(timeout=0.1) == "a"
    queue.done("a")
    assert queue.get(timeout=0.01) is None


def test_add_after():
    queue = WorkQueue()
    queue.add_after("a", 0.05)
    assert len(queue) == 0
    start = time.monotonic()
    assert queue.get(timeout=1) == "a"
    assert time.monotonic() - start >= 0.04


def test_add_after_non_positive_delay():
    queue = WorkQueue()
    queue.add_after("a", 0)
    assert len(queue) == 1


def test_rate_limited_backoff():
    """Make sure the per key delay doubles up to the cap and resets on
    forget
    """
    queue = WorkQueue(base_delay=1, max_delay=5)
    assert [queue.add_rate_limited("a") for _ in range(5)] == [1, 2, 4, 5, 5]
    assert queue.num_requeues("a") == 5
    assert queue.add_rate_limited("b") == 1

    queue.forget("a")
    assert queue.num_requeues("a") == 0
    assert queue.add_rate_limited("a") == 1


def test_delayed_duplicate_is_collapsed():
    queue = WorkQueue()
    queue.add("a")
    queue.add_after("a", 0.01)
    time.sleep(0.02)
    assert queue.get(timeout=0.1) == "a"
    assert queue.get(timeout=0.05) is None


@pytest.mark.timeout(5)
def test_shut_down_wakes_consumers():
    queue = WorkQueue()
    results = []
    thread = threading.Thread(target=lambda: results.append(queue.get()))
    thread.start()
    time.sleep(0.05)
    queue.shut_down()
    thread.join()
    assert results == [None]
    assert queue.shutting_down

    # Adds after shutdown are dropped
    queue.add("a")
    queue.add_after("b", 1)
    assert len(queue) == 0


def test_defaults_from_config():
    queue = WorkQueue()
    assert queue.base_delay == 1.0
    assert queue.max_delay == 300.0
