import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.core import config
from app.core.exceptions import BookingError
from app.db.init_db import init_db
from app.api.routes import appointments as appointments_router
from app.api.routes import availability as availability_router
from app.api.routes import backjobs as backjobs_router
from app.api.routes import ratings as ratings_router
from app.api.routes import search as search_router

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


app = FastAPI(title="Service Booking API")

@app.on_event("startup")
def startup():
    init_db()
    logger.info("Database tables ready")


@app.exception_handler(BookingError)
async def booking_error_handler(request: Request, exc: BookingError):
    if exc.status_code >= 500:
        logger.warning(f"{request.method} {request.url.path} failed: {exc.code}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.get("/")
def root():
    return {"message": "Service Booking API running"}


app.include_router(availability_router.router)
app.include_router(appointments_router.router)
app.include_router(backjobs_router.router)
app.include_router(ratings_router.router)
app.include_router(search_router.router)
