from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from agentbuy.database import DatabaseManager
from agentbuy.routes.dependencies import get_db

router = APIRouter(tags=["System"])


@router.get("/health")
async def health(db: DatabaseManager = Depends(get_db)):
    """Liveness plus a MongoDB ping. Answers 503 when the database is unreachable."""
    if await db.health_check():
        return {"status": "ok", "database": "connected"}
    return JSONResponse(status_code=503, content={"status": "error", "database": "disconnected"})
