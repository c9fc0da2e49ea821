"""
Centralized configuration using pydantic-settings.

How it works:
- Reads environment variables automatically (e.g., S3_RAW_BUCKET env var → Settings.S3_RAW_BUCKET)
- Falls back to defaults defined here if env vars are not set
- Can also read from a .env file in the project root

Both processes (the ingestion API and the transcode worker) import `settings`
from here instead of hardcoding bucket names, stream keys or timeouts.
"""

from typing import Literal, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # ── Object storage (S3 / MinIO) ─────────────────────────────
    S3_ENDPOINT_URL: Optional[str] = None  # e.g. http://minio:9000; None → AWS
    S3_ACCESS_KEY_ID: Optional[str] = None
    S3_SECRET_ACCESS_KEY: Optional[str] = None
    S3_REGION: str = "us-east-1"
    S3_RAW_BUCKET: str = "colossus-raw"
    S3_PROCESSED_BUCKET: str = "colossus-processed"

    # ── Redis ───────────────────────────────────────────────────
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0

    # ── Queue (Redis Streams) ───────────────────────────────────
    QUEUE_TOPIC: str = "colossus:transcode"
    QUEUE_GROUP_ID: str = "converter"
    QUEUE_CLIENT_ID: str = "backend"
    QUEUE_AUTO_OFFSET_RESET: Literal["earliest", "latest"] = "earliest"
    QUEUE_POLL_TIMEOUT_MS: int = 100     # bounds shutdown latency of the worker loop
    # False → offset committed on delivery (best-effort delivery).
    # True  → committed after processing; uncommitted jobs are redelivered (at-least-once).
    QUEUE_COMMIT_AFTER_PROCESSING: bool = False
    QUEUE_CONSUMER_NAME: Optional[str] = None  # None → "<hostname>-<pid>"
    QUEUE_CLAIM_IDLE_MS: int = 60000     # pending this long → another member takes it; <= 0 disables

    # ── Metrics ─────────────────────────────────────────────────
    METRICS_BACKEND: Literal["memory", "redis"] = "redis"
    METRICS_PREFIX: str = "colossus:metrics"

    # ── App ─────────────────────────────────────────────────────
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000
    LOG_LEVEL: str = "INFO"

    @property
    def redis_url(self) -> str:
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


# Singleton: import this everywhere
settings = Settings()
