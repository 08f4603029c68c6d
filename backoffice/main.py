# backoffice/main.py
import logging

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from backoffice.config import get_settings
from backoffice.core.logging import setup_logging
from backoffice.database import create_tables
from backoffice.exceptions import BackofficeError
from backoffice.routers import appointments, finance, health, medical_records, patients, payments
from backoffice.services.appointment_state import validate_transition_table

setup_logging()
logger = logging.getLogger(__name__)

settings = get_settings()

app = FastAPI(title=settings.app_name, version=settings.app_version)


@app.on_event("startup")
def on_startup():
    validate_transition_table()
    create_tables()
    logger.info(f"{settings.app_name} started (timezone {settings.clinic_timezone}, environment {settings.environment})")


@app.exception_handler(BackofficeError)
async def backoffice_error_handler(request: Request, exc: BackofficeError):
    if exc.status_code >= 500:
        logger.error(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
    else:
        logger.info(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["GET", "POST", "PATCH", "OPTIONS"],
    allow_headers=["*"],
)

app.include_router(health.router, prefix="/api/v1")
app.include_router(appointments.router, prefix="/api/v1")
app.include_router(payments.router, prefix="/api/v1")
app.include_router(finance.router, prefix="/api/v1")
app.include_router(patients.router, prefix="/api/v1")
app.include_router(medical_records.router, prefix="/api/v1")


if __name__ == "__main__":
    uvicorn.run("backoffice.main:app", host="0.0.0.0", port=8000, reload=settings.is_development)
