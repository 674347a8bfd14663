"""
Gradeflow — Academic records and marks calculation backend.
FastAPI entry point.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError

from gradeflow.core.config import settings
from gradeflow.core.errors import GradeflowError
from gradeflow.core.middleware import RequestContextMiddleware
from gradeflow.routers import analytics, attendance, audit, auth, marks, schemes
from gradeflow.utils.response import error_response

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger("gradeflow")

app = FastAPI(
    title=settings.APP_NAME,
    description="Role-based academic records: evaluation schemes, marks, attendance and audit trail",
    version="1.0.0",
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Client IP / user agent for audit entries, request logging
app.add_middleware(RequestContextMiddleware)


@app.exception_handler(GradeflowError)
async def gradeflow_error_handler(request: Request, exc: GradeflowError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_response(message=exc.message, data=exc.details),
    )


@app.exception_handler(PydanticValidationError)
async def model_validation_handler(request: Request, exc: PydanticValidationError):
    return JSONResponse(
        status_code=400,
        content=error_response(message="Validation failed", data=exc.errors(include_url=False, include_context=False)),
    )


# Include routers
app.include_router(auth.router)
app.include_router(schemes.router)
app.include_router(marks.router)
app.include_router(attendance.router)
app.include_router(analytics.router)
app.include_router(audit.router)


@app.get("/")
async def root():
    return {
        "name": settings.APP_NAME,
        "version": "1.0.0",
        "status": "running",
        "auth_mode": settings.AUTH_MODE,
    }


@app.get("/api/health")
async def health():
    return {"status": "healthy", "auth_mode": settings.AUTH_MODE}
