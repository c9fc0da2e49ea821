"""
Worker loop — polls the queue and runs transcode jobs one at a time.

State machine:

    POLLING ──message──> PROCESSING ──done/failed──> POLLING
       │
       └──stop flag set──> DRAINING ──consumer closed──> STOPPED

Each iteration while POLLING first checks the stop flag, then calls
consumer.poll() with a short timeout (100 ms by default). The flag is
therefore seen at least once per poll timeout, which bounds how long a
shutdown takes when the worker is idle.

A job that is already running is never interrupted: the flag is only
looked at between jobs, so shutdown waits for the current transcode and
upload to finish (or fail).

Failures are per job. A malformed payload, a missing raw object, a
corrupt image or an upload error are logged, counted, and the loop moves
on to the next message. Failures that would repeat on every delivery are
committed like successes; transport failures and unexpected errors stay
uncommitted so the consumer can hand the job out again.

Broker errors are logged and polling continues; the consumer recovers by
itself.
"""

import logging
import threading
from typing import Optional

from broker.client import BrokerError, Message, QueueConsumer
from metrics.sink import PROCESSED_FAILURE, PROCESSED_SUCCESS, MetricsSink
from models.enums import WorkerState
from models.errors import PipelineError, SchemaError, TransportError
from models.job import Job
from worker.executor import JobExecutor

logger = logging.getLogger(__name__)


class WorkerLoop:

    def __init__(
        self,
        consumer: QueueConsumer,
        executor: JobExecutor,
        metrics: MetricsSink,
        stop_event: Optional[threading.Event] = None,
        poll_timeout_ms: int = 100,
    ):
        self._consumer = consumer
        self._executor = executor
        self._metrics = metrics
        self._stop_event = stop_event or threading.Event()
        self._poll_timeout_ms = poll_timeout_ms
        self._state = WorkerState.POLLING
        self._thread: Optional[threading.Thread] = None

        # Set once the loop reached STOPPED; the owner waits on it before
        # shutting down anything that depends on the worker.
        self.done = threading.Event()
        self.polls = 0

    @property
    def state(self) -> WorkerState:
        return self._state

    def start(self) -> None:
        """Run the loop in a background thread."""
        self._thread = threading.Thread(target=self.run, name="worker-loop", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Ask the loop to stop. Returns immediately; wait on `done` to join."""
        self._stop_event.set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self.done.wait(timeout)

    def run(self) -> None:
        """Poll until the stop flag is observed, then drain and stop."""
        logger.info(f"Worker loop started on {self._consumer.topic} (poll timeout {self._poll_timeout_ms} ms)")
        try:
            while self._state is WorkerState.POLLING:
                if self._stop_event.is_set():
                    self._transition(WorkerState.DRAINING)
                    break

                event = self._consumer.poll(self._poll_timeout_ms)
                self.polls += 1
                if event is None:
                    continue  # timeout, loop again (check the stop flag)
                self._dispatch(event)
        finally:
            self._shutdown()

    def _transition(self, state: WorkerState) -> None:
        logger.debug(f"Worker state {self._state.value} → {state.value}")
        self._state = state

    def _dispatch(self, event) -> None:
        if isinstance(event, Message):
            self._handle_message(event)
        elif isinstance(event, BrokerError):
            # Informational: the consumer reconnects on the next poll.
            logger.warning(f"Broker error: {event}")
        else:
            logger.info(f"Ignored event {event!r}")

    def _handle_message(self, message: Message) -> None:
        self._transition(WorkerState.PROCESSING)
        partition = str(message.partition)
        try:
            job = Job.from_payload(message.value)
            logger.info(
                f"Message on {message.topic} [{partition}] @ {message.offset}: "
                f"{job.filename_raw} (k={job.k})"
            )
            self._executor.process(job)

        except SchemaError as e:
            logger.error(f"Failed to deserialize payload at offset {message.offset}: {e}")
            self._metrics.inc(PROCESSED_FAILURE, partition=partition, kind=e.kind)
            # Will never parse; acknowledge so it does not stay pending.
            self._commit(message)

        except PipelineError as e:
            logger.error(f"Failed to process message at offset {message.offset} [{e.kind}]: {e}")
            self._metrics.inc(PROCESSED_FAILURE, partition=partition, kind=e.kind)
            if not e.retryable:
                # Fails the same way on every delivery; acknowledge it.
                self._commit(message)

        except Exception as e:
            logger.error(f"Unexpected error processing offset {message.offset}: {e}", exc_info=True)
            self._metrics.inc(PROCESSED_FAILURE, partition=partition, kind="unexpected")

        else:
            self._metrics.inc(PROCESSED_SUCCESS, partition=partition)
            self._commit(message)

        finally:
            self._transition(WorkerState.POLLING)

    def _commit(self, message: Message) -> None:
        try:
            self._consumer.commit(message)
        except TransportError as e:
            logger.error(f"Commit of offset {message.offset} failed: {e}")

    def _shutdown(self) -> None:
        if self._state is not WorkerState.DRAINING:
            self._transition(WorkerState.DRAINING)
        logger.info("Closing consumer")
        try:
            self._consumer.close()
            self._executor.close()
        finally:
            self._transition(WorkerState.STOPPED)
            self.done.set()
            logger.info("Graceful consumer shutdown complete")
