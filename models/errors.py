"""
Error taxonomy shared by the ingestion API and the transcode worker.

Every failure that crosses a component boundary is one of these. Library
exceptions (botocore, redis, Pillow, pydantic) are translated at the seam
where they happen, so callers only ever catch PipelineError subclasses.

`kind` is a stable, short label used in logs and as the `kind` label of the
processed_failure counter.
"""

from typing import Optional


class PipelineError(Exception):
    kind = "pipeline"
    # Whether a later delivery of the same job can succeed.
    retryable = False


class ValidationError(PipelineError):
    """Malformed ingestion request (missing file, bad form field)."""
    kind = "validation"


class UnsupportedFormatError(PipelineError):
    """Content-type is not in the codec registry."""
    kind = "unsupported_format"


class NotFoundError(PipelineError):
    """Object missing in the store."""
    kind = "not_found"


class TransportError(PipelineError):
    """Object store or broker unreachable / returned an unexpected error."""
    kind = "transport"
    retryable = True


class SchemaError(PipelineError):
    """Job payload failed to parse."""
    kind = "schema"


class DecodeError(PipelineError):
    kind = "decode"


class EncodeError(PipelineError):
    kind = "encode"


class PipeClosedError(PipelineError):
    """Write on a bridge whose reader has already gone away."""
    kind = "pipe_closed"


class ProcessError(PipelineError):
    """
    Combined outcome of one transcode + upload.

    Both sides are kept: `transcode_error` from the producer thread and
    `upload_error` from the upload call. `primary` is the one that decides
    what the failure is reported as; `upload_succeeded` tells the caller
    that an object was written and must be treated as invalid.
    """

    def __init__(
        self,
        transcode_error: Optional[BaseException],
        upload_error: Optional[BaseException],
    ):
        self.transcode_error = transcode_error
        self.upload_error = upload_error

        if transcode_error is not None and not (
            isinstance(transcode_error, PipeClosedError) and upload_error is not None
        ):
            self.primary = transcode_error
        else:
            # Producer only failed because the upload stopped reading.
            self.primary = upload_error

        parts = []
        if transcode_error is not None:
            parts.append(f"transcode: {transcode_error}")
        if upload_error is not None:
            parts.append(f"upload: {upload_error}")
        super().__init__("; ".join(parts))

    @property
    def kind(self) -> str:
        return getattr(self.primary, "kind", "unknown")

    @property
    def retryable(self) -> bool:
        return getattr(self.primary, "retryable", False)

    @property
    def upload_succeeded(self) -> bool:
        return self.upload_error is None
