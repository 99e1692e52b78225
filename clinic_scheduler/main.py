from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, status, APIRouter
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from clinic_scheduler.config.database import engine, Base
from clinic_scheduler.config.redis_config import redis_config
from clinic_scheduler.config.settings import get_settings
from clinic_scheduler.exceptions import INTEGRITY, SchedulingError
from clinic_scheduler.routes import appointment, doctor, payment, reminder, room, survey
from clinic_scheduler.utils.response import APIResponse
import clinic_scheduler.models  # noqa: F401  registers every table on Base
import logging

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s"
)
logger = logging.getLogger("scheduling")
alert_logger = logging.getLogger("clinic_scheduler.alerts")

Base.metadata.create_all(bind=engine)

@asynccontextmanager
async def lifespan(app: FastAPI):
    if redis_config.enabled and not redis_config.test_connection():
        logger.warning("Availability cache enabled but Redis is unreachable, slots will be computed uncached")
    yield
    redis_config.close()

app = FastAPI(
    lifespan=lifespan,
    title=settings.api_title,
    description="""
    Clinic Scheduling Engine API

    Appointment slot allocation, doctor and room availability, and the
    payments coupled to each booking.

    ### Features:
    * **Availability**: free slots per doctor and date, honouring leave, rooms and business hours
    * **Booking**: atomic reservation of a slot with its pending payment
    * **Payments**: manual payments, credits from cancellations and credit redemption
    * **Reminders & Surveys**: token-based confirm/cancel replies and post-visit ratings

    ### Business Rules:
    * Business hours **09:00-19:00** by default, slots of the doctor's consultation length
    * In-person bookings always get a consultation room
    * Patient cancellations need **3 hours** notice by default
    * Cancelling a paid appointment turns the payment into credit

    ### For Frontend Developers:
    * Every endpoint answers with `{success, message, data, error}`
    * Conflicts (409) mean re-fetch availability and retry
    * OpenAPI schema available at `/api/openapi.json`
    """,
    version=settings.api_version,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in settings.allowed_origins.split(",") if origin.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.exception_handler(SchedulingError)
async def scheduling_exception_handler(request: Request, exc: SchedulingError):
    if exc.category == INTEGRITY:
        alert_logger.critical(
            f"{exc.error_type} on {request.method} {request.url.path}: {exc.message} {exc.details}"
        )
    else:
        logger.info(f"{exc.error_type} on {request.method} {request.url.path}: {exc.message}")
    return APIResponse.from_exception(exc)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return APIResponse.error(str(exc.detail), error_type="HTTPException", status_code=exc.status_code)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = []
    for error in exc.errors():
        errors.append({
            "field": " -> ".join(str(loc) for loc in error["loc"]),
            "message": error["msg"],
            "type": error["type"]
        })

    return APIResponse.error(
        "Validation Error",
        error_type="ValidationError",
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        details=errors
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return APIResponse.error(
        "Internal server error",
        error_type="InternalError",
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR
    )


system_router = APIRouter(prefix="/api", tags=["System"])

@system_router.get("/")
def api_root():
    """Root API endpoint with information"""
    return APIResponse.success({
        "message": settings.api_title,
        "version": settings.api_version,
        "documentation": {
            "swagger_ui": "/api/docs",
            "redoc": "/api/redoc",
            "openapi_schema": "/api/openapi.json"
        },
        "endpoints": {
            "doctors": "/api/v1/doctors",
            "appointments": "/api/v1/appointments",
            "payments": "/api/v1/payments",
            "reminders": "/api/v1/reminders",
            "surveys": "/api/v1/surveys",
            "rooms": "/api/v1/rooms"
        }
    })

@system_router.get("/health")
def health_check():
    """Health check endpoint for monitoring"""
    return APIResponse.success({
        "status": "healthy",
        "service": "clinic-scheduler",
        "version": settings.api_version
    })

app.include_router(system_router)

app.include_router(doctor.router, prefix="/api/v1")
app.include_router(appointment.router, prefix="/api/v1")
app.include_router(payment.router, prefix="/api/v1")
app.include_router(reminder.router, prefix="/api/v1")
app.include_router(survey.router, prefix="/api/v1")
app.include_router(room.router, prefix="/api/v1")

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "clinic_scheduler.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
        log_level=settings.log_level
    )
