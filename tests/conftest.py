"""
Shared test fixtures.

These replace real infrastructure with lightweight in-memory alternatives:
- S3 / MinIO → moto (mock_aws), buckets created fresh for each test
- Redis → fakeredis (pure Python Redis mock)
- HTTP server → httpx.AsyncClient with ASGI transport (no network)

This means tests:
- Run without Docker
- Run without network
- Are fully isolated (each test gets fresh buckets and a fresh stream)
"""

import io

import fakeredis
import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from moto import mock_aws
from PIL import Image

from api.main import create_app
from api.dependencies import get_metrics, get_producer, get_store
from broker.client import QueueProducer
from config.settings import settings
from metrics.sink import InMemoryMetrics
from storage.object_store import S3ObjectStore

RAW_BUCKET = settings.S3_RAW_BUCKET
PROCESSED_BUCKET = settings.S3_PROCESSED_BUCKET


@pytest.fixture
def aws_credentials(monkeypatch):
    """Fake AWS credentials so boto3 never looks for real ones."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")


@pytest.fixture
def s3_store(aws_credentials):
    """S3ObjectStore backed by moto, with the raw and processed buckets created."""
    with mock_aws():
        store = S3ObjectStore(region_name="us-east-1")
        store.ensure_bucket(RAW_BUCKET)
        store.ensure_bucket(PROCESSED_BUCKET)
        yield store


@pytest.fixture
def fake_redis():
    """Create a fake Redis instance (in-memory, no real Redis needed)."""
    r = fakeredis.FakeRedis()
    yield r
    r.flushall()


@pytest.fixture
def metrics():
    return InMemoryMetrics()


@pytest.fixture
def producer(fake_redis):
    return QueueProducer(fake_redis, client_id="test-backend")


@pytest.fixture
def make_image():
    """Factory: encoded image bytes of the given format/size."""
    def _make(fmt: str = "JPEG", size=(200, 100), mode: str = "RGB", color=(255, 0, 0)) -> bytes:
        img = Image.new(mode, size, color=color)
        buf = io.BytesIO()
        img.save(buf, format=fmt)
        return buf.getvalue()
    return _make


@pytest_asyncio.fixture
async def client(s3_store, producer, metrics):
    """
    Test HTTP client that talks directly to the FastAPI app.

    dependency_overrides swaps the real S3 / Redis clients (normally built in
    the lifespan) for moto- and fakeredis-backed ones. ASGITransport does not
    run the lifespan, so nothing tries to reach real infrastructure.
    """
    app = create_app()

    app.dependency_overrides[get_store] = lambda: s3_store
    app.dependency_overrides[get_producer] = lambda: producer
    app.dependency_overrides[get_metrics] = lambda: metrics

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
