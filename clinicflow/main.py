# clinicflow/main.py
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from .config import SEED_DOCTORS
from .database import AsyncSessionLocal, init_db
from .errors import WorkflowError
from .logging_setup import setup_logging
from .utils import create_initial_data

# --- IMPORT MODULES ---
from . import (
    appointment_api,
    billing_api,
    lab_api,
    dashboard_api,
)

setup_logging()
logger = logging.getLogger("clinicflow.main")

app = FastAPI(title="clinicflow")

# --- CORS SETTINGS ---
origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- REGISTER ROUTERS ---
app.include_router(appointment_api.router)
app.include_router(billing_api.router)
app.include_router(lab_api.router)
app.include_router(dashboard_api.router, prefix="/dashboard", tags=["Dashboard"])


# --- ERROR MAPPING ---
@app.exception_handler(WorkflowError)
async def workflow_error_handler(request: Request, exc: WorkflowError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(SQLAlchemyError)
async def store_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error("Unhandled storage error on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=503,
        content={"error": "store_error", "message": "Storage unavailable", "detail": {}},
    )


@app.on_event("startup")
async def on_startup():
    await init_db()
    logger.info("DATABASE: Tables ready.")
    if SEED_DOCTORS:
        async with AsyncSessionLocal() as session:
            await create_initial_data(session)


@app.get("/")
def read_root():
    return {"message": "clinicflow backend is running"}
