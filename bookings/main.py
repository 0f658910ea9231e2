import sys

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from loguru import logger
from tortoise.contrib.fastapi import register_tortoise

from bookings import settings
from bookings.errors import BookingError, DataIntegrityError
from bookings.routers import booking, wizard

TORTOISE_ORM = {
    "connections": {"default": settings.db_url},
    "apps": {"models": {"models": ["bookings.models"], "default_connection": "default"}},
}


def configure_logging(level: str = settings.LOG_LEVEL) -> None:
    logger.remove()
    logger.add(sys.stderr, level=level, backtrace=False)


def register_error_handlers(app: FastAPI) -> None:
    """Render core errors as ``{"detail", "code", ...}`` with their own status code."""

    @app.exception_handler(BookingError)
    async def booking_error_handler(request: Request, exc: BookingError) -> JSONResponse:
        if isinstance(exc, DataIntegrityError):
            logger.error(
                "Data integrity error on {} {}: {} {}",
                request.method,
                request.url.path,
                exc.message,
                exc.details,
            )
        return JSONResponse(
            status_code=exc.status_code,
            content=jsonable_encoder({"detail": exc.message, "code": exc.code, **exc.details}),
        )


def create_app() -> FastAPI:
    """Application factory: `uvicorn bookings.main:create_app --factory`."""
    configure_logging()
    app = FastAPI(title="Activity bookings")
    register_error_handlers(app)
    app.include_router(booking.router)
    app.include_router(wizard.router)
    register_tortoise(
        app,
        config=TORTOISE_ORM,
        generate_schemas=settings.GENERATE_SCHEMAS,
        add_exception_handlers=True,
    )
    return app

