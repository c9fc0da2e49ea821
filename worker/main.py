"""
Worker process entry point.

This is a SEPARATE process from the FastAPI ingestion API.
It runs one WorkerLoop: poll the jobs stream, transcode, upload, repeat.

Scaling out means starting more of these processes with the same
QUEUE_GROUP_ID; Redis hands each job to exactly one member of the group.
Nothing else is shared between instances except the metrics counters.

The loop runs in a background thread. The main thread just waits for
Ctrl+C (SIGINT) or a kill signal (SIGTERM), sets the stop flag, and then
waits until the loop reports it has stopped before closing the Redis
connection the loop was using.

To run:
    python -m worker.main

In Docker:
    command: python -m worker.main
"""

import logging
import signal
import threading

from redis import Redis

from broker.client import QueueConsumer
from config.settings import settings
from metrics.sink import build_metrics
from storage.object_store import S3ObjectStore
from worker.executor import JobExecutor
from worker.loop import WorkerLoop

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def build_worker(redis_client: Redis, stop_event: threading.Event) -> WorkerLoop:
    metrics = build_metrics(settings, redis_client)
    store = S3ObjectStore.from_settings(settings)

    consumer = QueueConsumer(
        redis_client,
        topic=settings.QUEUE_TOPIC,
        group_id=settings.QUEUE_GROUP_ID,
        consumer_name=settings.QUEUE_CONSUMER_NAME,
        auto_offset_reset=settings.QUEUE_AUTO_OFFSET_RESET,
        auto_commit=not settings.QUEUE_COMMIT_AFTER_PROCESSING,
        claim_idle_ms=settings.QUEUE_CLAIM_IDLE_MS,
    )
    consumer.subscribe()

    executor = JobExecutor(
        store,
        raw_bucket=settings.S3_RAW_BUCKET,
        processed_bucket=settings.S3_PROCESSED_BUCKET,
        metrics=metrics,
    )
    return WorkerLoop(
        consumer,
        executor,
        metrics,
        stop_event=stop_event,
        poll_timeout_ms=settings.QUEUE_POLL_TIMEOUT_MS,
    )


def main():
    redis_client = Redis.from_url(settings.redis_url)

    # ── Graceful shutdown on Ctrl+C or SIGTERM ──────────────────
    stop_event = threading.Event()

    def shutdown(signum, frame):
        logger.info(f"Caught signal {signal.Signals(signum).name}: terminating")
        stop_event.set()

    signal.signal(signal.SIGTERM, shutdown)
    signal.signal(signal.SIGINT, shutdown)

    worker = build_worker(redis_client, stop_event)
    worker.start()
    logger.info("Worker process running. Press Ctrl+C to stop.")

    # Block the main thread until the loop has drained and closed its consumer
    # (Event.wait() with a timeout keeps signal handlers responsive on every platform)
    while not worker.wait(timeout=1.0):
        pass

    redis_client.close()
    logger.info("Worker process exited")


if __name__ == "__main__":
    main()
