import threading

from conftest import T0
from trackwise.core.beacon_dispatcher import BeaconDispatcher
from trackwise.core.errors import UnknownDomainError
from trackwise.schemas import NormalizedEvent


def make_event(key="k"):
    return NormalizedEvent(session_id=key, domain_name="example.com", event_type="page_view", page="/", timestamp=T0)


def test_events_run_in_background():
    handled = []
    dispatcher = BeaconDispatcher(handled.append, max_workers=2, max_pending=10)
    dispatcher.start()
    try:
        assert dispatcher.submit(make_event("a"))
        assert dispatcher.submit(make_event("b"))
        assert dispatcher.drain(timeout=5)
    finally:
        dispatcher.stop()

    assert sorted(e.session_id for e in handled) == ["a", "b"]
    assert dispatcher.pending == 0


def test_full_queue_drops_new_events():
    gate = threading.Event()
    dispatcher = BeaconDispatcher(lambda event: gate.wait(timeout=5), max_workers=1, max_pending=2)
    dispatcher.start()
    try:
        assert dispatcher.submit(make_event("a"))
        assert dispatcher.submit(make_event("b"))
        assert dispatcher.submit(make_event("c")) is False
        assert dispatcher.dropped == 1
        gate.set()
        assert dispatcher.drain(timeout=5)
    finally:
        dispatcher.stop()


def test_handler_errors_stay_in_the_worker():
    def handler(event):
        if event.session_id == "unknown":
            raise UnknownDomainError(event.domain_name)
        raise RuntimeError("database exploded")

    dispatcher = BeaconDispatcher(handler, max_workers=1, max_pending=10)
    try:
        assert dispatcher.submit(make_event("unknown"))
        assert dispatcher.submit(make_event("other"))
        assert dispatcher.drain(timeout=5)
        assert dispatcher.is_running
    finally:
        dispatcher.stop()
    assert dispatcher.is_running is False


def test_stop_finishes_queued_work():
    handled = []
    gate = threading.Event()

    def handler(event):
        gate.wait(timeout=5)
        handled.append(event.session_id)

    dispatcher = BeaconDispatcher(handler, max_workers=1, max_pending=10)
    dispatcher.start()
    for key in ("a", "b", "c"):
        dispatcher.submit(make_event(key))
    gate.set()
    dispatcher.stop(wait_for_pending=True)

    assert handled == ["a", "b", "c"]


def test_stopped_dispatcher_drops_instead_of_restarting():
    handled = []
    dispatcher = BeaconDispatcher(handled.append, max_workers=1, max_pending=10)
    dispatcher.start()
    dispatcher.stop()

    assert dispatcher.submit(make_event("late")) is False
    assert dispatcher.dropped == 1
    assert dispatcher.is_running is False
    assert handled == []

    dispatcher.start()
    try:
        assert dispatcher.submit(make_event("again"))
        assert dispatcher.drain(timeout=5)
    finally:
        dispatcher.stop()
    assert [e.session_id for e in handled] == ["again"]
