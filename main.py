import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

import db
from config import settings
from app.routes.scheduled_payments import router as scheduled_payments_router
from app.services.errors import ScheduleError

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
_LOGGER = logging.getLogger(__name__)

app = FastAPI(title="Blockpal Scheduled Payments")
app.include_router(scheduled_payments_router)

# DB engine is created lazily on first use; tables are managed via Alembic.

@app.on_event("shutdown")
async def shutdown_event():
    await db.dispose_engine()

# --------------------------------------------
# Error rendering
# --------------------------------------------

@app.exception_handler(ScheduleError)
async def schedule_error_handler(request: Request, exc: ScheduleError):
    return JSONResponse(exc.to_dict(), status_code=exc.status_code)


@app.exception_handler(SQLAlchemyError)
async def store_error_handler(request: Request, exc: SQLAlchemyError):
    # Store failures are not retried here; executors retry their poll cycle.
    _LOGGER.exception("Store error on %s %s", request.method, request.url.path)
    return JSONResponse({"error": "Internal server error"}, status_code=500)

# --------------------------------------------
# Endpoint
# --------------------------------------------
@app.get("/health")
async def health():
    return {"status": "ok"}


if __name__ == "__main__":  # pragma: no cover
    import os
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
