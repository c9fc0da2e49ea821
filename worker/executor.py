"""
Job executor — processes a single transcode job.

This is the code that actually DOES THE WORK. The worker loop calls
executor.process(job) for each parsed message, and this method handles the
full lifecycle of one job:

    1. Open the raw object (stream + content-type) from the raw bucket and
       reject a content-type the codec registry does not know, before any
       byte is uploaded
    2. Run the StreamingBridge: transcode on one thread, streaming upload
       of the result into the processed bucket on this thread
    3. On success: count the bytes written, return the UploadInfo
    4. On failure: if an object was written anyway, delete it so a broken
       image is never left looking like a finished one; re-raise

No retries happen here. A failed job is dropped after it is logged and
counted by the loop; redelivery, if any, is up to the queue.

Thread safety:
- Jobs are processed one at a time per worker process
- The only state shared between jobs is the metrics sink (atomic increments)
"""

import logging
import time

from imaging.codecs import lookup
from metrics.sink import PROCESSED_SUCCESS_BYTES, MetricsSink
from models.errors import PipelineError, ProcessError
from models.job import Job
from storage.object_store import ObjectStore, UploadInfo
from worker.bridge import PipeReader, StreamingBridge

logger = logging.getLogger(__name__)


class JobExecutor:

    def __init__(
        self,
        store: ObjectStore,
        raw_bucket: str,
        processed_bucket: str,
        metrics: MetricsSink,
        bridge: StreamingBridge | None = None,
    ):
        self._store = store
        self._raw_bucket = raw_bucket
        self._processed_bucket = processed_bucket
        self._metrics = metrics
        self._bridge = bridge or StreamingBridge()

    def process(self, job: Job) -> UploadInfo:
        """
        Transcode one job end to end.

        Returns:
            UploadInfo of the processed object

        Raises:
            PipelineError: NotFoundError/TransportError from the raw fetch,
            UnsupportedFormatError before anything is uploaded,
            ProcessError for anything that went wrong in transcode or upload.
        """
        k = job.scale_factor
        start_time = time.monotonic()

        raw = self._store.get(self._raw_bucket, job.filename_raw)
        with raw:
            content_type = raw.content_type
            # Reject unknown formats before the upload opens the processed key.
            lookup(content_type)

            def upload(reader: PipeReader) -> UploadInfo:
                # size=None → chunked upload, the final size is unknown here
                return self._store.put(
                    self._processed_bucket,
                    job.filename_processed,
                    reader,
                    None,
                    content_type,
                )

            try:
                info = self._bridge.run(raw.stream, content_type, k, upload)
            except ProcessError as e:
                if e.upload_succeeded:
                    self._discard_processed(job)
                raise

        elapsed = time.monotonic() - start_time
        self._metrics.inc(PROCESSED_SUCCESS_BYTES, info.size, content_type=content_type)
        logger.info(
            f"Processed {job.filename_raw} → {job.filename_processed} "
            f"[{content_type}, k={k}, {info.size} bytes] in {elapsed:.3f}s"
        )
        return info

    def _discard_processed(self, job: Job) -> None:
        """Remove an object whose bytes came from a failed transcode."""
        try:
            self._store.delete(self._processed_bucket, job.filename_processed)
            logger.warning(f"Deleted incomplete processed object {job.filename_processed}")
        except PipelineError as e:
            logger.error(
                f"Could not delete incomplete processed object {job.filename_processed}: {e}"
            )

    def close(self) -> None:
        self._bridge.close()
