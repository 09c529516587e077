import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .api import get_booking_service, router
from .core.config import configure_logging, get_settings
from .core.db import Base, engine
from .core.responses import error_response
from .errors import BookingError
from .sweeper import HoldSweeper

settings = get_settings()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.log_level)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    sweeper = None
    if settings.hold_sweep_enabled:
        sweeper = HoldSweeper(get_booking_service().holds, settings.hold_sweep_interval_seconds)
        sweeper.start()
    app.state.hold_sweeper = sweeper

    yield

    if sweeper is not None:
        await sweeper.stop()
    await engine.dispose()


app = FastAPI(title="Booking Engine", lifespan=lifespan)
app.include_router(router)


@app.exception_handler(BookingError)
async def booking_error_handler(request: Request, exc: BookingError):
    return JSONResponse(
        status_code=exc.status_code,
        content=error_response(exc.code, exc.message, exc.details),
    )


@app.get("/health")
async def healthcheck():
    return {"ok": True}
