import threading
import time

from trackwise.core.keyed_lock import KeyedLock


def test_same_key_is_mutually_exclusive():
    locks = KeyedLock()
    inside = []
    overlaps = []

    def work():
        with locks.hold("session-a"):
            inside.append(1)
            if len(inside) > 1:
                overlaps.append(len(inside))
            time.sleep(0.005)
            inside.pop()

    threads = [threading.Thread(target=work) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert overlaps == []


def test_different_keys_do_not_block_each_other():
    locks = KeyedLock()
    acquired = threading.Event()

    def other_key():
        with locks.hold("session-b"):
            acquired.set()

    with locks.hold("session-a"):
        thread = threading.Thread(target=other_key)
        thread.start()
        assert acquired.wait(timeout=2)
        thread.join()


def test_entries_are_released_after_use():
    locks = KeyedLock()
    with locks.hold("session-a"):
        with locks.hold("session-b"):
            assert len(locks) == 2
    assert len(locks) == 0


def test_entry_survives_while_a_waiter_remains():
    locks = KeyedLock()
    waiter_done = threading.Event()

    def waiter():
        with locks.hold("session-a"):
            waiter_done.set()

    with locks.hold("session-a"):
        thread = threading.Thread(target=waiter)
        thread.start()
        # Give the waiter time to register on the key
        deadline = time.monotonic() + 2
        while time.monotonic() < deadline and locks._entries["session-a"].holders < 2:
            time.sleep(0.001)
        assert locks._entries["session-a"].holders == 2

    assert waiter_done.wait(timeout=2)
    thread.join()
    assert len(locks) == 0
