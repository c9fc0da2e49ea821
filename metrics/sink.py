"""
Metrics sink — the counters the API and the worker increment.

Components never touch a global registry. A sink is built once at process
start (build_metrics) and passed to whoever needs it.

Two implementations:
- InMemoryMetrics: per-process counters behind a lock (tests, single process)
- RedisMetrics: counters in Redis hashes, incremented with HINCRBYFLOAT.
  Each increment is a single atomic server-side operation, so any number of
  worker instances (and threads) can share the counters without locking.

Counter names used across the project are the module-level constants below.
"""

import logging
import threading
from typing import Protocol, runtime_checkable

from redis import Redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

# ── Ingestion API ───────────────────────────────────────────────
UPLOADED_RAW_IMAGES = "uploaded_raw_images"
UPLOADED_TO_QUEUE = "uploaded_to_queue"              # labels: partition, client_id
RETRIEVED_IMAGES = "retrieved_images"                # labels: bucket

# ── Worker ──────────────────────────────────────────────────────
PROCESSED_SUCCESS = "processed_success"              # labels: partition
PROCESSED_FAILURE = "processed_failure"              # labels: partition, kind
PROCESSED_SUCCESS_BYTES = "processed_success_bytes"  # labels: content_type


def label_key(labels: dict) -> str:
    """{"partition": 0, "kind": "decode"} → "kind=decode,partition=0" (order-independent)."""
    return ",".join(f"{k}={labels[k]}" for k in sorted(labels))


@runtime_checkable
class MetricsSink(Protocol):

    def inc(self, name: str, amount: float = 1, **labels) -> None:
        """Add `amount` to the counter `name` for this label set."""
        ...

    def value(self, name: str, **labels) -> float:
        """Current value of one labelled counter (0 if never incremented)."""
        ...


class InMemoryMetrics:

    def __init__(self):
        self._lock = threading.Lock()
        self._counters: dict[tuple[str, str], float] = {}

    def inc(self, name: str, amount: float = 1, **labels) -> None:
        key = (name, label_key(labels))
        with self._lock:
            self._counters[key] = self._counters.get(key, 0) + amount

    def value(self, name: str, **labels) -> float:
        with self._lock:
            return self._counters.get((name, label_key(labels)), 0)

    def snapshot(self) -> dict[str, dict[str, float]]:
        out: dict[str, dict[str, float]] = {}
        with self._lock:
            for (name, labels), count in self._counters.items():
                out.setdefault(name, {})[labels] = count
        return out


class RedisMetrics:
    """
    One Redis hash per counter name:

        colossus:metrics:processed_success  →  {"partition=0": "12"}
    """

    def __init__(self, redis_client: Redis, prefix: str = "colossus:metrics"):
        self._redis = redis_client
        self._prefix = prefix

    def _key(self, name: str) -> str:
        return f"{self._prefix}:{name}"

    def inc(self, name: str, amount: float = 1, **labels) -> None:
        # Losing a metric update must never fail a job or a request.
        try:
            self._redis.hincrbyfloat(self._key(name), label_key(labels), amount)
        except RedisError as e:
            logger.warning(f"Dropped metric {name}{labels}: {e}")

    def value(self, name: str, **labels) -> float:
        raw = self._redis.hget(self._key(name), label_key(labels))
        return float(raw) if raw is not None else 0

    def snapshot(self) -> dict[str, dict[str, float]]:
        out: dict[str, dict[str, float]] = {}
        for key in self._redis.scan_iter(match=f"{self._prefix}:*"):
            name = (key.decode() if isinstance(key, bytes) else key)[len(self._prefix) + 1:]
            values = self._redis.hgetall(key)
            out[name] = {
                (k.decode() if isinstance(k, bytes) else k): float(v) for k, v in values.items()
            }
        return out


def build_metrics(settings, redis_client: Redis) -> MetricsSink:
    """Factory used by both entry points, driven by METRICS_BACKEND."""
    if settings.METRICS_BACKEND == "redis":
        return RedisMetrics(redis_client, prefix=settings.METRICS_PREFIX)
    return InMemoryMetrics()
