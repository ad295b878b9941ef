import logging
import os
from datetime import datetime

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from deps import get_scheduler, get_storage
from errors import NotFoundError, ValidationError
from routes import medications, pt_tests, push, reminders
from storage import SqlStorage, seed_sample_data, seeding_enabled
from utils import env_flag

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Warfarin Manager API")

app.include_router(push.router)
app.include_router(reminders.router)
app.include_router(medications.router)
app.include_router(pt_tests.router)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.get("/api/health")
async def health():
    return {"status": "ok", "utc": datetime.utcnow().isoformat() + "Z"}


@app.on_event("startup")
async def startup():
    storage = get_storage()
    if isinstance(storage, SqlStorage):
        from database import Base, engine
        import models  # noqa: F401  (populate Base.metadata)

        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    if seeding_enabled():
        await seed_sample_data(storage)
    if env_flag("SCHEDULER_ENABLED", True):
        logger.info("[Startup] Scheduler enabled (SCHEDULER_ENABLED=1)")
        get_scheduler().start()
    else:
        logger.info("[Startup] Scheduler disabled via SCHEDULER_ENABLED env var")


@app.on_event("shutdown")
async def shutdown_event():
    get_scheduler().shutdown()
