import threading
import time

import pytest

from catalog.utils.keyed_lock import KeyedMutex, LockTimeout


def test_same_key_is_serialized():
    mutex = KeyedMutex()
    active = []
    overlaps = []

    def worker():
        with mutex.hold("E1"):
            active.append(1)
            if len(active) > 1:
                overlaps.append(True)
            time.sleep(0.01)
            active.pop()

    threads = [threading.Thread(target=worker) for _ in range(5)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert overlaps == []
    assert len(mutex) == 0


def test_different_keys_do_not_block():
    mutex = KeyedMutex(timeout=0.5)
    with mutex.hold("E1"):
        with mutex.hold("E2"):
            assert len(mutex) == 2


def test_timeout_raises():
    mutex = KeyedMutex(timeout=0.05)
    held = threading.Event()
    release = threading.Event()

    def holder():
        with mutex.hold("E1"):
            held.set()
            release.wait(2)

    thread = threading.Thread(target=holder)
    thread.start()
    held.wait(2)
    try:
        with pytest.raises(LockTimeout):
            with mutex.hold("E1"):
                pass
    finally:
        release.set()
        thread.join()
    assert len(mutex) == 0
