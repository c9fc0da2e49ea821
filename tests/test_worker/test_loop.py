"""
Tests for the worker loop state machine.

The consumer and executor are small in-memory fakes, so these tests only
exercise polling, dispatch, counting, committing and shutdown.
"""

import threading
import time
from collections import deque

from broker.client import BrokerError, Message
from metrics.sink import PROCESSED_FAILURE, PROCESSED_SUCCESS
from models.enums import WorkerState
from models.errors import DecodeError, NotFoundError, ProcessError, TransportError
from models.job import Job
from worker.loop import WorkerLoop

TOPIC = "test:transcode"


class FakeConsumer:
    """Hands out queued events; once empty, optionally raises the stop flag."""

    def __init__(self, events=(), stop_event=None, fail_commit=False):
        self.events = deque(events)
        self.stop_event = stop_event
        self.fail_commit = fail_commit
        self.committed = []
        self.closed = False
        self.topic = TOPIC

    def poll(self, timeout_ms):
        if self.events:
            return self.events.popleft()
        if self.stop_event is not None:
            self.stop_event.set()
        time.sleep(timeout_ms / 1000)
        return None

    def commit(self, message):
        if self.fail_commit:
            raise TransportError("redis went away")
        self.committed.append(message.offset)

    def close(self):
        self.closed = True


class FakeExecutor:

    def __init__(self, error=None):
        self.error = error
        self.jobs = []
        self.closed = False

    def process(self, job):
        self.jobs.append(job)
        if self.error is not None:
            raise self.error

    def close(self):
        self.closed = True


def _message(offset="1-0", value=None) -> Message:
    if value is None:
        value = Job.new("cat.png", k=3).to_payload()
    return Message(topic=TOPIC, partition=0, offset=offset, value=value)


def _run(events, executor, metrics, **consumer_kwargs):
    """Run the loop on this thread until every event has been handed out."""
    stop = threading.Event()
    consumer = FakeConsumer(events, stop_event=stop, **consumer_kwargs)
    loop = WorkerLoop(consumer, executor, metrics, stop_event=stop, poll_timeout_ms=1)
    loop.run()
    return loop, consumer


def test_successful_message(metrics):
    executor = FakeExecutor()
    loop, consumer = _run([_message("5-0")], executor, metrics)

    assert len(executor.jobs) == 1
    assert executor.jobs[0].k == 3
    assert metrics.value(PROCESSED_SUCCESS, partition="0") == 1
    assert consumer.committed == ["5-0"]
    assert loop.state is WorkerState.STOPPED
    assert loop.done.is_set()
    assert consumer.closed and executor.closed


def test_permanent_failure_counted_and_committed(metrics):
    executor = FakeExecutor(error=NotFoundError("no raw object"))
    _, consumer = _run([_message()], executor, metrics)

    assert metrics.value(PROCESSED_FAILURE, partition="0", kind="not_found") == 1
    assert metrics.value(PROCESSED_SUCCESS, partition="0") == 0
    # Would fail the same way again; no point leaving it pending.
    assert consumer.committed == ["1-0"]


def test_transient_failure_left_pending(metrics):
    executor = FakeExecutor(error=ProcessError(None, TransportError("s3 down")))
    _, consumer = _run([_message()], executor, metrics)

    assert metrics.value(PROCESSED_FAILURE, partition="0", kind="transport") == 1
    assert consumer.committed == []


def test_process_error_counted_by_primary_kind(metrics):
    executor = FakeExecutor(error=ProcessError(DecodeError("corrupt"), None))
    _run([_message()], executor, metrics)

    assert metrics.value(PROCESSED_FAILURE, partition="0", kind="decode") == 1


def test_bad_payload_does_not_stop_the_loop(metrics):
    executor = FakeExecutor()
    events = [_message("1-0", b"{not json"), _message("2-0")]
    _, consumer = _run(events, executor, metrics)

    assert metrics.value(PROCESSED_FAILURE, partition="0", kind="schema") == 1
    assert metrics.value(PROCESSED_SUCCESS, partition="0") == 1
    # The unparseable entry is acknowledged too
    assert consumer.committed == ["1-0", "2-0"]
    assert len(executor.jobs) == 1


def test_unexpected_exception_is_contained(metrics):
    executor = FakeExecutor(error=RuntimeError("bug"))
    loop, consumer = _run([_message("1-0"), _message("2-0")], executor, metrics)

    assert metrics.value(PROCESSED_FAILURE, partition="0", kind="unexpected") == 2
    assert consumer.committed == []
    assert loop.state is WorkerState.STOPPED


def test_broker_error_and_other_events_are_skipped(metrics):
    executor = FakeExecutor()
    events = [BrokerError(ConnectionError("reset")), "rebalance", _message()]
    loop, _ = _run(events, executor, metrics)

    assert len(executor.jobs) == 1
    assert metrics.value(PROCESSED_SUCCESS, partition="0") == 1
    assert metrics.snapshot().keys() == {PROCESSED_SUCCESS}


def test_commit_failure_is_logged_not_raised(metrics):
    executor = FakeExecutor()
    loop, _ = _run([_message(), _message("2-0")], executor, metrics, fail_commit=True)

    assert len(executor.jobs) == 2
    assert loop.state is WorkerState.STOPPED


def test_stop_before_start(metrics):
    stop = threading.Event()
    stop.set()
    consumer = FakeConsumer([_message()])
    loop = WorkerLoop(consumer, FakeExecutor(), metrics, stop_event=stop)

    loop.run()

    assert loop.polls == 0
    assert loop.state is WorkerState.STOPPED
    assert consumer.closed
    assert len(consumer.events) == 1


def test_idle_shutdown_is_bounded_by_poll_timeout(metrics):
    consumer = FakeConsumer()
    loop = WorkerLoop(consumer, FakeExecutor(), metrics, poll_timeout_ms=50)
    loop.start()
    time.sleep(0.12)

    started = time.monotonic()
    loop.stop()
    assert loop.wait(timeout=2)
    assert time.monotonic() - started < 0.5
    assert loop.polls >= 1
    assert consumer.closed


def test_stop_during_processing_finishes_current_job(metrics):
    entered = threading.Event()
    release = threading.Event()

    class SlowExecutor(FakeExecutor):
        def process(self, job):
            entered.set()
            release.wait(2)
            super().process(job)

    executor = SlowExecutor()
    consumer = FakeConsumer([_message("1-0"), _message("2-0")])
    loop = WorkerLoop(consumer, executor, metrics, poll_timeout_ms=10)
    loop.start()

    assert entered.wait(2)
    assert loop.state is WorkerState.PROCESSING
    loop.stop()
    release.set()
    assert loop.wait(timeout=2)

    # The running job completed; the queued one was never polled.
    assert len(executor.jobs) == 1
    assert metrics.value(PROCESSED_SUCCESS, partition="0") == 1
    assert loop.polls == 1
    assert [m.offset for m in consumer.events] == ["2-0"]
    assert loop.state is WorkerState.STOPPED

