"""
Main FastAPI application entry point.
"""
from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from exam_engine.core.config import settings
from exam_engine.core.database import init_db
from exam_engine.core.errors import ExamEngineError
from exam_engine.api.auth import router as auth_router
from exam_engine.api.questions import router as questions_router
from exam_engine.api.exams import router as exams_router
from exam_engine.api.assignments import router as assignments_router
from exam_engine.api.attempts import router as attempts_router

# Configure logging
logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL, logging.INFO), format=settings.LOG_FORMAT)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting %s %s (%s)", settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT)
    if not settings.is_production():
        init_db()
    yield
    logger.info("Shutting down %s", settings.APP_NAME)


def _error(status_code: int, message, error_type: str, **extra) -> JSONResponse:
    body = {"message": message, "type": error_type, "status_code": status_code}
    body.update(extra)
    return JSONResponse(status_code=status_code, content={"success": False, "error": body})


def create_app(run_lifespan: bool = True) -> FastAPI:
    app = FastAPI(
        title=settings.APP_NAME,
        description=settings.APP_DESCRIPTION,
        version=settings.APP_VERSION,
        docs_url=settings.DOCS_URL if not settings.is_production() else None,
        openapi_url=settings.OPENAPI_URL if not settings.is_production() else None,
        lifespan=lifespan if run_lifespan else None,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ExamEngineError)
    async def exam_engine_error_handler(request: Request, exc: ExamEngineError):
        logger.info("%s %s -> %s: %s", request.method, request.url.path, exc.status_code, exc.message)
        return _error(exc.status_code, exc.message, exc.error_type)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return _error(exc.status_code, exc.detail, "http_error")

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return _error(
            status.HTTP_422_UNPROCESSABLE_ENTITY, "Validation failed", "validation_error",
            details=jsonable_errors(exc),
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        logger.error("Unhandled exception on %s %s: %s", request.method, request.url.path, exc, exc_info=True)
        message = "An unexpected error occurred. Please try again later."
        if not settings.is_production():
            message = str(exc) or message
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, message, "internal_error")

    prefix = settings.API_V1_PREFIX
    if not settings.is_production():
        app.include_router(auth_router, prefix=f"{prefix}/auth", tags=["auth"])
    app.include_router(questions_router, prefix=prefix, tags=["question-bank"])
    app.include_router(exams_router, prefix=f"{prefix}/exams", tags=["exams"])
    app.include_router(assignments_router, prefix=f"{prefix}/exam-assignments", tags=["assignments"])
    app.include_router(attempts_router, prefix=f"{prefix}/exam-attempts", tags=["attempts"])

    @app.get("/health", tags=["health"])
    def health():
        return {"status": "ok", "version": settings.APP_VERSION}

    return app


def jsonable_errors(exc: RequestValidationError) -> list:
    # ctx may hold exception objects that JSON can't carry.
    return [{k: v for k, v in e.items() if k != "ctx"} for e in exc.errors()]


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("exam_engine.main:app", host="0.0.0.0", port=8000, log_level=settings.LOG_LEVEL.lower())
