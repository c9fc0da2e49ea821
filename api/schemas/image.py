"""
Pydantic schemas for the image endpoints.

These define the HTTP API contract of the ingestion service:
- UploadInfoResponse: where the raw upload landed
- UploadResponse: what POST /upload-image returns (the queued job + delivery)
- ErrorResponse: body of every 4xx/5xx raised from a PipelineError
"""

from datetime import datetime

from pydantic import BaseModel


class UploadInfoResponse(BaseModel):
    bucket: str
    key: str
    etag: str
    size: int


class UploadResponse(BaseModel):
    """Response body for POST /upload-image."""

    message: str
    filename_raw: str
    filename_processed: str
    queued_at: datetime
    k: int
    info: UploadInfoResponse
    partition: int      # queue partition the job landed on
    offset: str         # queue offset (stream entry id) of the job


class ErrorResponse(BaseModel):
    message: str
    error: bool = True
