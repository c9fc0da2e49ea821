"""
FastAPI dependency injection.

How this works:
- An endpoint declares `store: ObjectStore = Depends(get_store)`
- FastAPI calls get_store() before your endpoint runs
- The clients themselves are created once in the app lifespan and kept
  on app.state, so every request shares the same connection pools

Tests replace these with app.dependency_overrides (moto S3, fakeredis),
the same way they would swap any other dependency.
"""

from fastapi import Request

from broker.client import QueueProducer
from metrics.sink import MetricsSink
from storage.object_store import ObjectStore


def get_store(request: Request) -> ObjectStore:
    """Returns the object store client created during startup."""
    return request.app.state.store


def get_producer(request: Request) -> QueueProducer:
    """Returns the job producer created during startup."""
    return request.app.state.producer


def get_metrics(request: Request) -> MetricsSink:
    return request.app.state.metrics
