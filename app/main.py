from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from app.config import get_settings
from app.database import engine
from app.errors import InvalidTransitionError, PaymentError
from app.logging_config import setup_logging
from app.middleware import InterceptorMiddleware, LoggingInterceptor
from app import models

settings = get_settings()
setup_logging(settings)
logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Create tables
    models.Base.metadata.create_all(bind=engine)
    logger.info(
        "application_startup",
        env=settings.app_env,
        gateway_environment=settings.gateway_environment,
        webhook_verify=settings.webhook_verify,
    )
    yield
    engine.dispose()
    logger.info("application_shutdown")


app = FastAPI(
    title="Storefront Payments API",
    description="Initiates gateway payments and reconciles their status from webhooks",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(InterceptorMiddleware, interceptors=[LoggingInterceptor()])


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


@app.exception_handler(PaymentError)
async def payment_error_handler(request: Request, exc: PaymentError):
    if exc.status_code >= 500:
        logger.error("request_failed", error_type=type(exc).__name__, error=exc.message)
    elif isinstance(exc, InvalidTransitionError):
        logger.warning("request_rejected_invalid_transition", error=exc.message)
    else:
        logger.info("request_rejected", error_type=type(exc).__name__, error=exc.message)
    return _error(exc.status_code, exc.public_message)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    problems = []
    for err in exc.errors():
        field = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
        problems.append(f"{field}: {err.get('msg')}" if field else err.get("msg"))
    return _error(400, "; ".join(problems) or "Invalid request")


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error("database_error", error=str(exc), exc_info=exc)
    return _error(500, "Internal server error")


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error("unhandled_error", error=str(exc), exc_info=exc)
    return _error(500, "Internal server error")


@app.get("/health")
def health_check():
    return {"status": "ok", "service": settings.app_name}


# Route table
from app.routers import payments, webhooks  # noqa: E402
app.include_router(payments.router, prefix="/payment", tags=["payments"])
app.include_router(webhooks.router, prefix="/payment", tags=["webhooks"])
