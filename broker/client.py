"""
Queue client — publish/poll transcode jobs over Redis Streams.

Mapping of queue concepts onto Redis:

    topic           → stream key (XADD / XREADGROUP)
    consumer group  → stream consumer group (one per worker fleet)
    offset          → stream entry id ("1714564800000-0")
    partition       → always 0 (a stream is a single ordered log)
    commit          → XACK, or NOACK on read when auto-commit is on

Several worker processes share one consumer group; Redis hands each entry
to exactly one of them. No deduplication happens here: a job can be
delivered again (e.g. after an un-acked crash with auto-commit off), and
the worker tolerates that because reprocessing overwrites the same object.

Delivery semantics (auto-commit on, the default):
    The entry is marked delivered by the read itself. If the worker dies
    between poll() and finishing the job, that job is NOT redelivered.
    This is best-effort delivery, not a guarantee.

Delivery semantics (auto-commit off):
    An entry stays in the group's pending list until commit() acknowledges
    it. poll() hands pending entries out again before reading new ones:

    1. Right after joining, the consumer replays its OWN pending entries
       (XREADGROUP from id 0). This covers a restart under the same
       consumer name.
    2. Then, at most once per `claim_idle_ms`, it takes over one entry that
       has been pending for longer than `claim_idle_ms` with XAUTOCLAIM,
       whoever owned it. This covers members that died for good (the
       default consumer name contains the pid, so a restarted process is
       a new member) and retries a job of its own that failed earlier.

    So a job that was read but never committed is delivered again, which
    makes this mode at-least-once. claim_idle_ms <= 0 turns step 2 off.
"""

import logging
import os
import socket
import time
from dataclasses import dataclass, field
from typing import Optional, Union

from redis import Redis
from redis.exceptions import RedisError, ResponseError

from models.enums import OffsetReset
from models.errors import TransportError

logger = logging.getLogger(__name__)

PAYLOAD_FIELD = "value"
PARTITION = 0


@dataclass(frozen=True)
class DeliveryReport:
    """Broker acknowledgement of one publish."""
    topic: str
    partition: int
    offset: str


@dataclass(frozen=True)
class Message:
    topic: str
    partition: int
    offset: str
    value: bytes
    headers: dict = field(default_factory=dict)


@dataclass(frozen=True)
class BrokerError:
    """
    A transient broker condition reported by poll().

    Informational: the consumer recovers by itself on the next poll
    (reconnect, recreate the group if it vanished).
    """
    error: Exception

    def __str__(self) -> str:
        return f"{type(self.error).__name__}: {self.error}"


Event = Union[Message, BrokerError]


def _text(value) -> str:
    return value.decode() if isinstance(value, bytes) else str(value)


def default_consumer_name() -> str:
    """Unique per process so several workers can share a group."""
    return f"{socket.gethostname()}-{os.getpid()}"


class QueueProducer:

    def __init__(self, redis_client: Redis, client_id: str):
        self._redis = redis_client
        self._client_id = client_id

    @property
    def client_id(self) -> str:
        return self._client_id

    def publish(self, topic: str, payload: bytes) -> DeliveryReport:
        """
        Append `payload` to the topic and wait for the broker's acknowledgement.

        XADD returns the new entry id only once the server has appended it,
        so a returned DeliveryReport means the message is in the stream.
        """
        try:
            entry_id = self._redis.xadd(
                topic, {PAYLOAD_FIELD: payload, "client_id": self._client_id}
            )
        except RedisError as e:
            raise TransportError(f"Delivery to {topic} failed: {e}") from e

        report = DeliveryReport(topic=topic, partition=PARTITION, offset=_text(entry_id))
        logger.info(
            f"Delivered message to topic {report.topic} [{report.partition}] at offset {report.offset}"
        )
        return report


class QueueConsumer:

    def __init__(
        self,
        redis_client: Redis,
        topic: str,
        group_id: str,
        consumer_name: Optional[str] = None,
        auto_offset_reset: Union[OffsetReset, str] = OffsetReset.EARLIEST,
        auto_commit: bool = True,
        claim_idle_ms: int = 60000,
    ):
        self._redis = redis_client
        self._topic = topic
        self._group_id = group_id
        self._consumer_name = consumer_name or default_consumer_name()
        self._offset_reset = OffsetReset(auto_offset_reset)
        self._auto_commit = auto_commit
        self._claim_idle_ms = claim_idle_ms
        self._group_ready = False
        self._closed = False

        # Last pending id replayed to this member; None once the backlog is drained.
        self._backlog_cursor: Optional[str] = None
        self._next_claim_at = 0.0

    @property
    def topic(self) -> str:
        return self._topic

    @property
    def closed(self) -> bool:
        return self._closed

    def _ensure_group(self) -> None:
        """
        Create the consumer group if it does not exist yet.

        The start id only matters the first time the group is created:
        earliest → "0" (whole stream), latest → "$" (only new entries).
        """
        start_id = "0" if self._offset_reset is OffsetReset.EARLIEST else "$"
        try:
            self._redis.xgroup_create(self._topic, self._group_id, id=start_id, mkstream=True)
            logger.info(
                f"Created consumer group {self._group_id} on {self._topic} "
                f"(auto_offset_reset={self._offset_reset.value})"
            )
        except ResponseError as e:
            if "BUSYGROUP" not in str(e):
                raise
        self._group_ready = True
        if not self._auto_commit:
            self._backlog_cursor = "0"

    def subscribe(self) -> None:
        """Join the group eagerly (poll() would do it lazily otherwise)."""
        try:
            self._ensure_group()
        except RedisError as e:
            raise TransportError(f"Cannot subscribe to {self._topic}: {e}") from e

    def poll(self, timeout_ms: int) -> Optional[Event]:
        """
        Wait up to `timeout_ms` for one message.

        Returns a Message, a BrokerError (transient, logged by the caller),
        or None when nothing arrived in time.
        """
        if self._closed:
            raise RuntimeError("poll() on a closed consumer")

        try:
            if not self._group_ready:
                self._ensure_group()
            entries = self._redeliveries()
            if not entries:
                # BLOCK 0 means "forever" in Redis; a non-positive timeout is a non-blocking read.
                entries = self._read(">", timeout_ms if timeout_ms > 0 else None)
        except RedisError as e:
            # The group may have vanished with the stream (e.g. Redis restarted
            # without persistence); recreate it on the next poll.
            self._group_ready = False
            return BrokerError(e)

        for entry_id, fields in entries:
            # A pending entry deleted from the stream comes back without fields.
            fields = {_text(k): v for k, v in (fields or {}).items()}
            value = fields.pop(PAYLOAD_FIELD, None)
            offset = _text(entry_id)
            if value is None:
                logger.info(f"Ignored entry {offset} on {self._topic}: no '{PAYLOAD_FIELD}' field")
                try:
                    self._ack(offset)
                except TransportError as e:
                    return BrokerError(e)
                continue
            if isinstance(value, str):
                value = value.encode("utf-8")
            return Message(
                topic=self._topic,
                partition=PARTITION,
                offset=offset,
                value=value,
                headers={k: _text(v) for k, v in fields.items()},
            )
        return None

    def _read(self, stream_id: str, block: Optional[int]) -> list:
        response = self._redis.xreadgroup(
            self._group_id,
            self._consumer_name,
            {self._topic: stream_id},
            count=1,
            block=block,
            noack=self._auto_commit,
        )
        entries = []
        for _stream, stream_entries in response or []:
            entries.extend(stream_entries)
        return entries

    def _redeliveries(self) -> list:
        """
        Entries that were delivered before but never acknowledged.

        Own backlog first, one entry per call, then at most one idle entry
        claimed from any member. Always empty with auto-commit, since
        nothing is ever left pending then.
        """
        if self._auto_commit:
            return []

        if self._backlog_cursor is not None:
            # Any id other than ">" reads this member's pending list after that id.
            entries = self._read(self._backlog_cursor, None)
            if entries:
                self._backlog_cursor = _text(entries[-1][0])
                logger.info(f"Redelivering pending entry {self._backlog_cursor} to {self._consumer_name}")
                return entries
            self._backlog_cursor = None

        if self._claim_idle_ms <= 0 or time.monotonic() < self._next_claim_at:
            return []

        response = self._redis.xautoclaim(
            self._topic,
            self._group_id,
            self._consumer_name,
            min_idle_time=self._claim_idle_ms,
            start_id="0-0",
            count=1,
        )
        claimed = list(response[1]) if response else []
        if claimed:
            logger.warning(
                f"Claimed entry {_text(claimed[0][0])} on {self._topic} idle for more than "
                f"{self._claim_idle_ms} ms"
            )
            return claimed
        self._next_claim_at = time.monotonic() + self._claim_idle_ms / 1000
        return []

    def commit(self, message: Message) -> None:
        """Acknowledge a message. No-op when auto-commit already did it."""
        if self._auto_commit:
            return
        self._ack(message.offset)

    def _ack(self, offset: str) -> None:
        if self._auto_commit:
            return
        try:
            self._redis.xack(self._topic, self._group_id, offset)
        except RedisError as e:
            raise TransportError(f"Cannot commit offset {offset} on {self._topic}: {e}") from e

    def close(self) -> None:
        """
        Leave the group. The Redis connection belongs to the caller and
        stays open; entries are not lost (the group keeps its position).
        """
        if self._closed:
            return
        self._closed = True
        logger.info(f"Closed consumer {self._consumer_name} on {self._topic}")
