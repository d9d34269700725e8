from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from core.database import db_manager

router = APIRouter(tags=["system"])


# --------------------------
# Metrics Endpoint
# --------------------------
@router.get("/metrics")
async def get_metrics():
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


# --------------------------
# Health Check
# --------------------------
@router.get("/health")
async def health_check(request: Request):
    database = await db_manager.health_check()
    email = await request.app.state.email_service.health_check()

    # unconfigured mail is a deployment choice, not an outage
    healthy = database["status"] == "healthy" and email["status"] != "unhealthy"
    return JSONResponse(
        status_code=200 if healthy else 503,
        content={
            "status": "healthy" if healthy else "unhealthy",
            "checks": {"database": database, "email": email},
        },
    )
