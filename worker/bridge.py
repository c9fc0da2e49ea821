"""
Streaming bridge — couples the transcode encoder to the object store upload.

    ┌──────────────────────────┐            ┌──────────────────────────┐
    │ Producer (own thread)    │   Pipe     │ Consumer (caller thread) │
    │ decode → scale → encode  │──write()──>│ store.put(reader, ...)   │
    │ writes encoded bytes     │  rendezvous│ reads until EOF          │
    └──────────────────────────┘            └──────────────────────────┘

The pipe has no buffer of its own: write(b) returns only once the reader
has taken every byte of b. While the upload is busy sending a part, the
encoder is parked inside write(). This is the backpressure point, and it is
what keeps memory bounded by the upload's part size instead of the size of
the image.

Outcome of one run (both sides are always joined first):

    producer ok,   upload ok    → upload result
    producer err,  upload ok    → ProcessError (transcode error is primary;
                                  the uploaded bytes are incomplete)
    producer ok,   upload err   → ProcessError (upload error is primary)
    producer err,  upload err   → ProcessError carrying both; transcode error
                                  is primary unless it is only the
                                  PipeClosedError caused by the upload bailing out
"""

import io
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import BinaryIO, Callable, Iterator, Optional, TypeVar

from imaging.transcode import transcode
from models.errors import PipeClosedError, ProcessError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_CHUNK_SIZE = 64 * 1024


class Pipe:
    """
    Synchronous in-memory pipe (one writer thread, one reader thread).

    Holds at most the one buffer currently being offered by the writer,
    and that buffer belongs to the writer (it is blocked until it is consumed).
    """

    def __init__(self):
        self._cond = threading.Condition()
        self._pending = memoryview(b"")
        self._write_closed = False
        self._read_closed = False
        self.reader = PipeReader(self)
        self.writer = PipeWriter(self)


class PipeWriter:
    """Write end. Looks enough like a file for Pillow's encoders."""

    def __init__(self, pipe: Pipe):
        self._pipe = pipe
        self._position = 0

    @property
    def closed(self) -> bool:
        return self._pipe._write_closed

    def writable(self) -> bool:
        return True

    def write(self, data) -> int:
        """Offer `data` to the reader and block until all of it was read."""
        pipe = self._pipe
        view = memoryview(data).cast("B")
        size = len(view)
        with pipe._cond:
            if pipe._write_closed:
                raise ValueError("write to closed pipe")
            if pipe._read_closed:
                raise PipeClosedError("reader closed the pipe")
            if size == 0:
                return 0

            pipe._pending = view
            pipe._cond.notify_all()
            while len(pipe._pending) and not pipe._read_closed:
                pipe._cond.wait()

            if len(pipe._pending):
                pipe._pending = memoryview(b"")
                raise PipeClosedError("reader closed the pipe")

        self._position += size
        return size

    def tell(self) -> int:
        return self._position

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        # TIFF's encoder seeks to the position it is already at; allow only that.
        target = offset if whence == io.SEEK_SET else self._position + offset
        if whence not in (io.SEEK_SET, io.SEEK_CUR) or target != self._position:
            raise io.UnsupportedOperation("pipe is not seekable")
        return self._position

    def flush(self) -> None:
        pass

    def close(self) -> None:
        """Signal end-of-stream to the reader. Safe to call more than once."""
        pipe = self._pipe
        with pipe._cond:
            pipe._write_closed = True
            pipe._cond.notify_all()


class PipeReader:
    """
    Read end. File-like: read(n) blocks until n bytes or end-of-stream.

    Iterating yields chunks as the writer produces them; the sequence is
    finite (ends at end-of-stream) and cannot be restarted.
    """

    def __init__(self, pipe: Pipe):
        self._pipe = pipe
        self.bytes_read = 0

    @property
    def closed(self) -> bool:
        return self._pipe._read_closed

    def readable(self) -> bool:
        return True

    def _take(self, limit: int) -> bytes:
        """Wait for data, then take up to `limit` bytes (-1 → all offered). b"" at EOF."""
        pipe = self._pipe
        while not len(pipe._pending) and not pipe._write_closed and not pipe._read_closed:
            pipe._cond.wait()
        if pipe._read_closed:
            raise ValueError("read from closed pipe")
        if not len(pipe._pending):
            return b""

        if limit < 0 or limit >= len(pipe._pending):
            chunk = bytes(pipe._pending)
            pipe._pending = memoryview(b"")
            pipe._cond.notify_all()  # writer can return
        else:
            chunk = bytes(pipe._pending[:limit])
            pipe._pending = pipe._pending[limit:]
        self.bytes_read += len(chunk)
        return chunk

    def read1(self, size: int = -1) -> bytes:
        """Return whatever the writer currently offers (up to `size`)."""
        with self._pipe._cond:
            return self._take(size)

    def read(self, size: int = -1) -> bytes:
        if size == 0:
            return b""
        chunks = []
        remaining = size
        with self._pipe._cond:
            while size < 0 or remaining > 0:
                chunk = self._take(remaining if size > 0 else -1)
                if not chunk:
                    break
                chunks.append(chunk)
                remaining -= len(chunk)
        return b"".join(chunks)

    def __iter__(self) -> Iterator[bytes]:
        while True:
            chunk = self.read1(DEFAULT_CHUNK_SIZE)
            if not chunk:
                return
            yield chunk

    def close(self) -> None:
        """Stop reading. A writer blocked in (or calling) write() gets PipeClosedError."""
        pipe = self._pipe
        with pipe._cond:
            pipe._read_closed = True
            pipe._cond.notify_all()


class StreamingBridge:
    """
    Runs one transcode concurrently with the upload that consumes it.

    The producer runs on a single dedicated thread owned by the bridge; the
    upload runs on the calling thread. Jobs are never overlapped: run()
    returns only after both sides have finished.
    """

    def __init__(self, executor: Optional[ThreadPoolExecutor] = None):
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="transcode"
        )

    @staticmethod
    def _produce(source: BinaryIO, content_type: str, k: int, writer: PipeWriter) -> tuple[int, int]:
        try:
            return transcode(source, content_type, k, writer)
        finally:
            # End-of-stream on success AND on error; the error itself travels
            # through the future, not through the pipe.
            writer.close()

    def run(
        self,
        source: BinaryIO,
        content_type: str,
        k: int,
        upload: Callable[[PipeReader], T],
    ) -> T:
        """
        Transcode `source` and feed the result to `upload(reader)`.

        Returns upload's result if both sides succeeded, raises ProcessError otherwise.
        """
        pipe = Pipe()
        producer: Future = self._executor.submit(
            self._produce, source, content_type, k, pipe.writer
        )

        upload_result = None
        upload_error: Optional[BaseException] = None
        try:
            upload_result = upload(pipe.reader)
        except Exception as e:
            upload_error = e
        finally:
            # Unblocks a producer still writing if the upload returned early.
            pipe.reader.close()

        # Join the producer before deciding anything.
        transcode_error = producer.exception()

        if transcode_error is not None or upload_error is not None:
            raise ProcessError(transcode_error, upload_error) from (transcode_error or upload_error)

        logger.debug(f"Bridge finished: {pipe.reader.bytes_read} bytes streamed")
        return upload_result

    def close(self) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=True)
