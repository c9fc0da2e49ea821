"""
Health check endpoint.

Static: it answers as long as the process is serving requests. Load
balancers and container orchestrators (k8s) use it as a liveness check.
"""

from fastapi import APIRouter

router = APIRouter(tags=["health"])


@router.get("/healthz")
async def health_check() -> dict:
    return {"message": "ok"}
