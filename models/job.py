"""
Transcode job — the wire contract between the ingestion API and the worker.

A Job is published once to the queue by the API after the raw upload
succeeded, and consumed by a worker. There is no job table: everything the
worker needs is inside the message itself.

Wire format (JSON):
    {
        "filename_processed": "0b9f...-processed.jpg",
        "filename_raw": "0b9f...-raw.jpg",
        "message": "file uploaded successfully",
        "queued_at": "2024-05-01T12:00:00Z",
        "k": 4
    }

Key design decisions:
- Both filenames derive from ONE uuid4 and keep the original extension, so
  a duplicate delivery of the same job overwrites the same processed object
  (reprocessing is idempotent).
- k <= 1 (or missing) means "not specified" → the worker uses 2.
- Unknown keys are ignored: the API also publishes the raw upload `info`.
"""

import os
import uuid
from datetime import datetime, timezone
from typing import Union

from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError

from models.errors import SchemaError

DEFAULT_SCALE_FACTOR = 2


def generate_name_pair(original_filename: str) -> tuple[str, str]:
    """sample.jpg → ("<uuid>-raw.jpg", "<uuid>-processed.jpg")"""
    ident = uuid.uuid4()
    ext = os.path.splitext(original_filename)[1]
    return f"{ident}-raw{ext}", f"{ident}-processed{ext}"


class Job(BaseModel):

    filename_processed: str
    filename_raw: str
    message: str = ""
    queued_at: datetime
    k: int = 0

    # frozen=True → immutable once produced; extra="ignore" → tolerate extra keys
    model_config = ConfigDict(frozen=True, extra="ignore")

    @classmethod
    def new(cls, original_filename: str, message: str = "file uploaded successfully", k: int = 0) -> "Job":
        filename_raw, filename_processed = generate_name_pair(original_filename)
        return cls(
            filename_raw=filename_raw,
            filename_processed=filename_processed,
            message=message,
            queued_at=datetime.now(timezone.utc).replace(microsecond=0),
            k=k,
        )

    @property
    def scale_factor(self) -> int:
        """The divisor actually applied by the worker."""
        return self.k if self.k > 1 else DEFAULT_SCALE_FACTOR

    def to_payload(self) -> bytes:
        return self.model_dump_json().encode("utf-8")

    @classmethod
    def from_payload(cls, payload: Union[bytes, str]) -> "Job":
        """Parse a queue message value. Raises SchemaError on anything malformed."""
        try:
            return cls.model_validate_json(payload)
        except PydanticValidationError as e:
            raise SchemaError(f"Invalid job payload: {e.error_count()} error(s): {e}") from e
