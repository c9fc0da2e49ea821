"""Tests for S3ObjectStore against moto's in-memory S3."""

import io
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError
from moto import mock_aws

from config.settings import settings
from models.errors import NotFoundError, TransportError
from storage.object_store import MULTIPART_CHUNK_SIZE, ObjectStore, S3ObjectStore

BUCKET = settings.S3_RAW_BUCKET


class OneWayStream:
    """Readable, not seekable, no length: what the worker's pipe looks like to boto3."""

    def __init__(self, data: bytes):
        self._buf = io.BytesIO(data)

    def read(self, size=-1):
        return self._buf.read(size)


def test_implements_protocol(s3_store):
    assert isinstance(s3_store, ObjectStore)


def test_put_known_size_then_get(s3_store):
    data = b"\x00\x01raw image bytes"
    info = s3_store.put(BUCKET, "a-raw.png", io.BytesIO(data), len(data), "image/png")

    assert info.bucket == BUCKET
    assert info.key == "a-raw.png"
    assert info.size == len(data)
    assert info.etag

    with s3_store.get(BUCKET, "a-raw.png") as obj:
        assert obj.stream.read() == data
        assert obj.content_type == "image/png"
        assert obj.size == len(data)


def test_put_unknown_size(s3_store):
    data = b"streamed" * 1000
    info = s3_store.put(BUCKET, "b-processed.gif", OneWayStream(data), None, "image/gif")

    assert info.size == len(data)
    with s3_store.get(BUCKET, "b-processed.gif") as obj:
        assert obj.stream.read() == data
        assert obj.content_type == "image/gif"


def test_unknown_size_above_one_part_is_multipart(s3_store):
    data = bytes(range(256)) * ((MULTIPART_CHUNK_SIZE + 1024 * 1024) // 256)
    info = s3_store.put(BUCKET, "big.bmp", OneWayStream(data), None, "image/bmp")

    assert info.size == len(data)
    # Multipart ETags carry the part count
    assert info.etag.strip('"').endswith("-2")
    with s3_store.get(BUCKET, "big.bmp") as obj:
        assert obj.stream.read() == data


def test_empty_unknown_size(s3_store):
    info = s3_store.put(BUCKET, "empty", OneWayStream(b""), None, "image/png")
    assert info.size == 0


def test_get_missing_key(s3_store):
    with pytest.raises(NotFoundError):
        s3_store.get(BUCKET, "nope")


def test_get_missing_bucket(s3_store):
    with pytest.raises(NotFoundError):
        s3_store.get("no-such-bucket", "nope")


def test_delete(s3_store):
    s3_store.put(BUCKET, "gone", io.BytesIO(b"x"), 1, "image/png")
    s3_store.delete(BUCKET, "gone")

    with pytest.raises(NotFoundError):
        s3_store.get(BUCKET, "gone")
    # Deleting again is not an error
    s3_store.delete(BUCKET, "gone")


def test_ensure_bucket_is_idempotent(s3_store):
    s3_store.ensure_bucket(BUCKET)
    s3_store.ensure_bucket("brand-new")
    s3_store.ensure_bucket("brand-new")
    s3_store.put("brand-new", "k", io.BytesIO(b"x"), 1, "image/png")


def test_ensure_bucket_outside_default_region(aws_credentials):
    with mock_aws():
        store = S3ObjectStore(region_name="eu-west-1")
        store.ensure_bucket("eu-bucket")
        store.put("eu-bucket", "k", io.BytesIO(b"x"), 1, "image/png")
        with store.get("eu-bucket", "k") as obj:
            assert obj.stream.read() == b"x"


def test_connection_failure_is_transport_error():
    client = MagicMock()
    client.get_object.side_effect = EndpointConnectionError(endpoint_url="http://minio:9000")
    store = S3ObjectStore(client=client)

    with pytest.raises(TransportError):
        store.get(BUCKET, "k")


def test_access_denied_is_transport_error():
    client = MagicMock()
    client.put_object.side_effect = ClientError(
        {"Error": {"Code": "AccessDenied", "Message": "denied"}}, "PutObject"
    )
    store = S3ObjectStore(client=client)

    with pytest.raises(TransportError):
        store.put(BUCKET, "k", io.BytesIO(b"x"), 1, "image/png")


def test_from_settings():
    client_settings = MagicMock(
        S3_ENDPOINT_URL="http://localhost:9000",
        S3_REGION="us-east-1",
        S3_ACCESS_KEY_ID="minioadmin",
        S3_SECRET_ACCESS_KEY="minioadmin",
    )
    store = S3ObjectStore.from_settings(client_settings)
    assert store._client.meta.endpoint_url == "http://localhost:9000"
