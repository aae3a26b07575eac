from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from .routes import router as api_router
from .logging_setup import configure_logging
from .config import settings
from .errors import ServiceError
from . import db, services
import logging

# configure file logging for the app
configure_logging(settings.LOG_FILE, settings.LOG_LEVEL)
logger = logging.getLogger("fedotaxi.main")

app = FastAPI(title="FedoTaxi - Ride Hailing API")

# Enable CORS for the mobile/web frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix="/api")


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    logger.info("service_error: %s %s -> %s %s", request.method, request.url.path, exc.status_code, exc.detail)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@app.on_event("startup")
async def _startup():
    logger.info("Starting FedoTaxi API application")
    await db.init_db()
    if settings.ADMIN_EMAIL and settings.ADMIN_PASSWORD:
        async with db.get_conn() as conn:
            await services.ensure_admin(conn, settings.ADMIN_EMAIL, settings.ADMIN_PASSWORD)


@app.get("/")
async def read_root():
    return {"message": "FedoTaxi API"}
