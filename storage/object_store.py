"""
Object store client — get/put byte streams by (bucket, key).

ObjectStore is the interface the worker and the API depend on;
S3ObjectStore implements it with boto3 against S3 or any S3-compatible
server (MinIO in docker-compose).

Uploads of unknown size (the worker's processed images, whose size is only
known once the encoder has finished) go through boto3's managed transfer,
which reads the stream part by part and switches to a multipart upload
once the data exceeds one part. Nothing ever needs the full image in memory.

botocore errors are translated into NotFoundError / TransportError here,
so nothing above this module imports botocore.
"""

import logging
from dataclasses import dataclass
from typing import BinaryIO, Optional, Protocol, runtime_checkable

import boto3
from boto3.exceptions import S3UploadFailedError
from boto3.s3.transfer import TransferConfig
from botocore.exceptions import BotoCoreError, ClientError

from models.errors import NotFoundError, TransportError

logger = logging.getLogger(__name__)

# Minimum S3 multipart part size (except last) is 5 MB
MULTIPART_CHUNK_SIZE = 8 * 1024 * 1024  # 8 MB
MULTIPART_THRESHOLD = 8 * 1024 * 1024   # stream is split into parts above this

_MISSING_CODES = ("404", "NoSuchKey", "NotFound")


@dataclass
class StoredObject:
    stream: BinaryIO
    content_type: str
    size: int

    def close(self) -> None:
        self.stream.close()

    def __enter__(self) -> "StoredObject":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


@dataclass
class UploadInfo:
    bucket: str
    key: str
    etag: str
    size: int

    def to_dict(self) -> dict:
        return {"bucket": self.bucket, "key": self.key, "etag": self.etag, "size": self.size}


@runtime_checkable
class ObjectStore(Protocol):

    def get(self, bucket: str, key: str) -> StoredObject:
        """Open an object for streaming. Raises NotFoundError / TransportError."""
        ...

    def put(
        self,
        bucket: str,
        key: str,
        stream: BinaryIO,
        size: Optional[int],
        content_type: str,
    ) -> UploadInfo:
        """Upload a stream. size=None → length not known upfront (chunked)."""
        ...

    def delete(self, bucket: str, key: str) -> None:
        ...


class _CountingReader:
    """Wraps a readable stream and counts the bytes handed to the uploader."""

    def __init__(self, stream: BinaryIO):
        self._stream = stream
        self.count = 0

    def read(self, size: int = -1) -> bytes:
        data = self._stream.read(size)
        self.count += len(data)
        return data


def _translate(e: Exception, bucket: str, key: str) -> Exception:
    if isinstance(e, ClientError):
        code = str(e.response.get("Error", {}).get("Code", ""))
        if code in _MISSING_CODES:
            return NotFoundError(f"Object s3://{bucket}/{key} not found")
        if code in ("NoSuchBucket",):
            return NotFoundError(f"Bucket {bucket} not found")
    return TransportError(f"S3 request for s3://{bucket}/{key} failed: {e}")


class S3ObjectStore:
    """ObjectStore implementation using S3."""

    def __init__(
        self,
        *,
        endpoint_url: Optional[str] = None,
        region_name: Optional[str] = None,
        access_key_id: Optional[str] = None,
        secret_access_key: Optional[str] = None,
        client=None,
    ) -> None:
        self._client = client or boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            region_name=region_name,
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
        )
        self._region = region_name
        # use_threads=False → parts are read and sent on the calling thread,
        # one at a time, so at most one part is buffered.
        self._transfer_config = TransferConfig(
            multipart_threshold=MULTIPART_THRESHOLD,
            multipart_chunksize=MULTIPART_CHUNK_SIZE,
            use_threads=False,
        )

    @classmethod
    def from_settings(cls, settings) -> "S3ObjectStore":
        return cls(
            endpoint_url=settings.S3_ENDPOINT_URL,
            region_name=settings.S3_REGION,
            access_key_id=settings.S3_ACCESS_KEY_ID,
            secret_access_key=settings.S3_SECRET_ACCESS_KEY,
        )

    def get(self, bucket: str, key: str) -> StoredObject:
        try:
            resp = self._client.get_object(Bucket=bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            raise _translate(e, bucket, key) from e
        return StoredObject(
            stream=resp["Body"],
            content_type=resp.get("ContentType") or "application/octet-stream",
            size=resp.get("ContentLength", -1),
        )

    def put(
        self,
        bucket: str,
        key: str,
        stream: BinaryIO,
        size: Optional[int],
        content_type: str,
    ) -> UploadInfo:
        try:
            if size is not None:
                resp = self._client.put_object(
                    Bucket=bucket,
                    Key=key,
                    Body=stream,
                    ContentLength=size,
                    ContentType=content_type,
                )
                return UploadInfo(bucket=bucket, key=key, etag=resp.get("ETag", ""), size=size)

            counting = _CountingReader(stream)
            self._client.upload_fileobj(
                counting,
                bucket,
                key,
                ExtraArgs={"ContentType": content_type},
                Config=self._transfer_config,
            )
            head = self._client.head_object(Bucket=bucket, Key=key)
        except (ClientError, BotoCoreError, S3UploadFailedError) as e:
            raise _translate(e, bucket, key) from e

        return UploadInfo(
            bucket=bucket,
            key=key,
            etag=head.get("ETag", ""),
            size=head.get("ContentLength", counting.count),
        )

    def delete(self, bucket: str, key: str) -> None:
        try:
            self._client.delete_object(Bucket=bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            raise _translate(e, bucket, key) from e

    def ensure_bucket(self, bucket: str) -> None:
        """Create `bucket` if it does not exist yet. Already owning it is fine."""
        try:
            self._client.head_bucket(Bucket=bucket)
            logger.info(f"Bucket {bucket} already exists")
            return
        except ClientError as e:
            code = str(e.response.get("Error", {}).get("Code", ""))
            if code not in _MISSING_CODES + ("NoSuchBucket",):
                raise TransportError(f"Cannot inspect bucket {bucket}: {e}") from e
        except BotoCoreError as e:
            raise TransportError(f"Cannot inspect bucket {bucket}: {e}") from e

        try:
            if self._region and self._region != "us-east-1":
                self._client.create_bucket(
                    Bucket=bucket,
                    CreateBucketConfiguration={"LocationConstraint": self._region},
                )
            else:
                self._client.create_bucket(Bucket=bucket)
        except ClientError as e:
            code = str(e.response.get("Error", {}).get("Code", ""))
            if code not in ("BucketAlreadyOwnedByYou", "BucketAlreadyExists"):
                raise TransportError(f"Cannot create bucket {bucket}: {e}") from e
        except BotoCoreError as e:
            raise TransportError(f"Cannot create bucket {bucket}: {e}") from e
        logger.info(f"Created bucket {bucket}")
