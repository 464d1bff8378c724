"""Tests for the single-worker operation serializer."""

import threading

import pytest

from ntoolbox.core.results import OperationResult
from ntoolbox.core.serializer import OperationSerializer


@pytest.fixture
def serializer_factory():
    created = []

    def factory(**kwargs):
        serializer = OperationSerializer(**kwargs)
        created.append(serializer)
        return serializer

    yield factory
    for serializer in created:
        serializer.shutdown()


def test_runs_operation_and_returns_result(serializer_factory):
    serializer = serializer_factory()
    completed = []

    ticket = serializer.submit(
        "demo",
        lambda progress: OperationResult.success(operation="demo"),
        on_complete=completed.append,
    )

    result = ticket.result(timeout=5)
    assert result.ok
    assert completed == [result]
    assert serializer.current is None
    assert not serializer.busy


def test_second_submit_rejected_while_busy(serializer_factory):
    serializer = serializer_factory()
    started = threading.Event()
    release = threading.Event()

    def slow(progress):
        started.set()
        release.wait(5)
        return OperationResult.success(operation="slow")

    ticket = serializer.submit("slow", slow)
    assert started.wait(5)
    assert serializer.busy
    assert serializer.current is ticket

    assert serializer.submit("other", lambda progress: OperationResult.success(operation="other")) is None

    release.set()
    assert ticket.result(timeout=5).ok
    again = serializer.submit("other", lambda progress: OperationResult.success(operation="other"))
    assert again is not None
    assert again.result(timeout=5).operation == "other"


def test_exception_becomes_failed_result_and_monitor_resumes(serializer_factory, fake_transport):
    fake_transport.start_monitoring()
    fake_transport.monitor_events.clear()
    serializer = serializer_factory(monitor=fake_transport)

    def broken(progress):
        raise RuntimeError("cable pulled")

    result = serializer.submit("broken", broken).result(timeout=5)

    assert not result.ok
    assert result.operation == "broken"
    assert result.errors == ["cable pulled"]
    assert fake_transport.monitor_events == ["stop", "start"]
    assert fake_transport.monitoring is True
    assert not serializer.busy


def test_monitor_left_alone_when_not_running(serializer_factory, fake_transport):
    serializer = serializer_factory(monitor=fake_transport)

    serializer.submit("noop", lambda progress: OperationResult.success(operation="noop")).result(timeout=5)

    assert fake_transport.monitor_events == []
    assert fake_transport.monitoring is False


def test_monitor_stopped_during_operation(serializer_factory, fake_transport):
    fake_transport.start_monitoring()
    serializer = serializer_factory(monitor=fake_transport)
    observed = []

    def operation(progress):
        observed.append(fake_transport.monitoring)
        return OperationResult.success(operation="op")

    serializer.submit("op", operation).result(timeout=5)
    assert observed == [False]
    assert fake_transport.monitoring is True


def test_callbacks_go_through_dispatch_in_order(serializer_factory):
    events = []
    lock = threading.Lock()

    def dispatch(fn):
        with lock:
            events.append("dispatch")
        fn()

    serializer = serializer_factory(
        dispatch=dispatch,
        on_busy_changed=lambda enabled: events.append(("enabled", enabled)),
    )

    def operation(progress):
        progress(50)
        return OperationResult.success(operation="op")

    ticket = serializer.submit(
        "op",
        operation,
        on_progress=lambda percent: events.append(("progress", percent)),
        on_complete=lambda result: events.append(("complete", result.ok)),
    )
    ticket.result(timeout=5)
    serializer.shutdown()

    assert [e for e in events if e != "dispatch"] == [
        ("enabled", False),
        ("progress", 50),
        ("enabled", True),
        ("complete", True),
    ]
    assert events.count("dispatch") == 4


def test_ticket_retired_only_after_completion_is_delivered(serializer_factory):
    serializer = serializer_factory()
    observed = []

    def on_complete(result):
        observed.append(serializer.busy)
        observed.append(
            serializer.submit("next", lambda progress: OperationResult.success(operation="next"))
        )

    ticket = serializer.submit(
        "first",
        lambda progress: OperationResult.success(operation="first"),
        on_complete=on_complete,
    )
    ticket.result(timeout=5)

    assert observed == [True, None]
    assert not serializer.busy
    assert serializer.current is None


def test_lock_released_when_completion_callback_raises(serializer_factory):
    serializer = serializer_factory()

    def on_complete(result):
        raise RuntimeError("ui gone")

    ticket = serializer.submit(
        "op", lambda progress: OperationResult.success(operation="op"), on_complete=on_complete
    )
    with pytest.raises(RuntimeError):
        ticket.result(timeout=5)
    assert not serializer.busy
