"""
Shared enumerations used across the entire project.

Using Python enums (inheriting from str) means:
- They serialize to JSON automatically ("raw", not "ImageKind.RAW")
- ImageKind("thumbnail") raises ValueError, which the API turns into a 400
- They work as log/metrics labels
"""

import enum


class ImageKind(str, enum.Enum):
    RAW = "raw"                # original upload, stored in the raw bucket
    PROCESSED = "processed"    # downscaled copy written by the worker


class WorkerState(str, enum.Enum):
    POLLING = "POLLING"        # waiting on the queue (bounded poll timeout)
    PROCESSING = "PROCESSING"  # one job is being transcoded + uploaded
    DRAINING = "DRAINING"      # stop flag observed, no new polls
    STOPPED = "STOPPED"        # consumer closed, loop exited (terminal)


class OffsetReset(str, enum.Enum):
    EARLIEST = "earliest"      # new consumer group starts at the beginning of the stream
    LATEST = "latest"          # new consumer group only sees messages published from now on
