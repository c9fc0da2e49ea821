"""
Image ingestion and retrieval endpoints.

POST /upload-image                   → Store a raw image, queue a transcode job
GET  /retrieve-image/{type}/{file}   → Stream a raw or processed image back

The API layer is intentionally thin:
- Validate the upload (file present, content-type in the codec registry)
- Write the raw bytes to the raw bucket
- Publish one Job to the queue and wait for the broker's acknowledgement

It does NOT transcode anything. That's the worker's job.

Endpoints are plain `def`: boto3 and the Redis producer are blocking
clients, and FastAPI runs sync endpoints in its thread pool.
"""

import json
import logging
from typing import BinaryIO, Iterator, Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile
from fastapi.responses import StreamingResponse

from api.dependencies import get_metrics, get_producer, get_store
from api.schemas.image import ErrorResponse, UploadInfoResponse, UploadResponse
from broker.client import QueueProducer
from config.settings import settings
from imaging.codecs import lookup, normalize_content_type
from metrics.sink import RETRIEVED_IMAGES, UPLOADED_RAW_IMAGES, UPLOADED_TO_QUEUE, MetricsSink
from models.enums import ImageKind
from models.errors import ValidationError
from models.job import Job
from storage.object_store import ObjectStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=["images"])

_ERRORS = {400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}, 502: {"model": ErrorResponse}}

STREAM_CHUNK_SIZE = 64 * 1024


def _stream_size(stream: BinaryIO) -> int:
    """Size of a seekable upload spool without reading it."""
    stream.seek(0, 2)
    size = stream.tell()
    stream.seek(0)
    return size


def _iter_object(stream: BinaryIO) -> Iterator[bytes]:
    try:
        while True:
            chunk = stream.read(STREAM_CHUNK_SIZE)
            if not chunk:
                break
            yield chunk
    finally:
        stream.close()


@router.post("/upload-image", response_model=UploadResponse, responses=_ERRORS)
def upload_image(
    file: Optional[UploadFile] = File(None),
    k: int = Form(0, description="Downscale divisor; <= 1 means the default (2)"),
    store: ObjectStore = Depends(get_store),
    producer: QueueProducer = Depends(get_producer),
    metrics: MetricsSink = Depends(get_metrics),
) -> UploadResponse:
    """
    Accept one image upload and queue it for transcoding.

    1. Validate: a `file` part is required and its content-type must be
       one the worker can decode (otherwise 400, nothing is stored)
    2. Store the bytes as "<uuid>-raw<ext>" in the raw bucket
    3. Publish the Job (filenames, queued_at, k) and wait for delivery
    """
    if file is None or not file.filename:
        raise ValidationError("Missing multipart field 'file'")

    content_type = normalize_content_type(file.content_type or "")
    lookup(content_type)  # UnsupportedFormatError → 400

    job = Job.new(file.filename, k=k)
    size = _stream_size(file.file)
    info = store.put(settings.S3_RAW_BUCKET, job.filename_raw, file.file, size, content_type)
    metrics.inc(UPLOADED_RAW_IMAGES)
    logger.info(f"Successfully uploaded {job.filename_raw} of size {info.size}")

    payload = {**job.model_dump(mode="json"), "info": info.to_dict()}
    report = producer.publish(settings.QUEUE_TOPIC, json.dumps(payload).encode("utf-8"))
    metrics.inc(UPLOADED_TO_QUEUE, partition=report.partition, client_id=producer.client_id)

    return UploadResponse(
        message=job.message,
        filename_raw=job.filename_raw,
        filename_processed=job.filename_processed,
        queued_at=job.queued_at,
        k=job.k,
        info=UploadInfoResponse(**info.to_dict()),
        partition=report.partition,
        offset=report.offset,
    )


@router.get("/retrieve-image/{kind}/{file}", responses=_ERRORS)
def retrieve_image(
    kind: str,
    file: str,
    store: ObjectStore = Depends(get_store),
    metrics: MetricsSink = Depends(get_metrics),
) -> StreamingResponse:
    """Stream an object from the raw or processed bucket with its stored content-type."""
    try:
        image_kind = ImageKind(kind)
    except ValueError:
        raise ValidationError(f"'{kind}' is not a valid type")

    bucket = settings.S3_RAW_BUCKET if image_kind is ImageKind.RAW else settings.S3_PROCESSED_BUCKET
    obj = store.get(bucket, file)  # NotFoundError → 404
    metrics.inc(RETRIEVED_IMAGES, bucket=bucket)

    headers = {"Content-Length": str(obj.size)} if obj.size >= 0 else None
    return StreamingResponse(_iter_object(obj.stream), media_type=obj.content_type, headers=headers)
