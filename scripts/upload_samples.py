"""
Upload script — posts the sample images to a running API for demo purposes.

Usage:
    python scripts/generate_sample_image.py
    python -m scripts.upload_samples

Each sample is uploaded with a different scale factor, then the script
waits for the worker to write the processed copy and fetches it back.

Run this after `docker compose up` (API, worker, Redis and MinIO running).
"""

import io
import mimetypes
import os
import time

import httpx
from PIL import Image

BASE_URL = "http://localhost:8000"
SAMPLE_DIR = "sample_data"

SAMPLES = [
    ("sample.jpg", 2),
    ("sample.png", 4),
    ("sample.gif", 0),     # 0 → worker default (2)
    ("sample.bmp", 8),
    ("sample.tiff", 3),
]


def wait_for_processed(client: httpx.Client, filename: str, timeout: float = 30.0) -> bytes:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        resp = client.get(f"/retrieve-image/processed/{filename}")
        if resp.status_code == 200:
            return resp.content
        time.sleep(0.5)
    raise TimeoutError(f"{filename} was not processed within {timeout:.0f}s")


def upload():
    client = httpx.Client(base_url=BASE_URL, timeout=10.0)

    print(f"Uploading {len(SAMPLES)} images to {BASE_URL}...\n")

    queued = []
    for name, k in SAMPLES:
        path = os.path.join(SAMPLE_DIR, name)
        content_type = mimetypes.guess_type(path)[0] or "application/octet-stream"
        with open(path, "rb") as f:
            resp = client.post(
                "/upload-image",
                files={"file": (name, f, content_type)},
                data={"k": str(k)},
            )
        resp.raise_for_status()
        data = resp.json()
        queued.append(data)
        print(f"  [queued @ {data['offset']}] {name} → {data['filename_processed']} (k={k})")

    print("\nWaiting for the worker...\n")
    for data in queued:
        content = wait_for_processed(client, data["filename_processed"])
        with Image.open(io.BytesIO(content)) as img:
            print(f"  {data['filename_processed']}: {img.format} {img.size[0]}x{img.size[1]}")

    print("\nDone! Metrics live in Redis:")
    print("  redis-cli HGETALL colossus:metrics:processed_success")


if __name__ == "__main__":
    upload()
