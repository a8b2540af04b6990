"""Consensus MR Reviewer - FastAPI entry point."""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from mr_reviewer.config import settings
from mr_reviewer.core.exceptions import ApiException, LLMNotConfiguredError
from mr_reviewer.core.llm import get_completion
from mr_reviewer.core.logging import get_logger
from mr_reviewer.core.schemas.responses import ErrorResponse, HealthResponse
from mr_reviewer.services.gitlab.routes import router as gitlab_router

logger = get_logger("main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Select the completion backend once at startup."""
    try:
        get_completion()
    except LLMNotConfiguredError as e:
        logger.warning(f"{e}; reviews will fail until it is configured")
    yield


app = FastAPI(
    title="Consensus MR Reviewer",
    description="GitLab merge request reviewer reconciling several LLM review passes",
    version="0.1.0",
    lifespan=lifespan,
)


@app.exception_handler(ApiException)
async def api_exception_handler(request: Request, exc: ApiException) -> JSONResponse:
    """Handle custom API exceptions and return structured error response."""
    logger.warning(f"API error: {exc.message} (status={exc.status_code})")
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=exc.message,
            details=exc.details if exc.details else None,
        ).model_dump(),
    )

# Include routes
app.include_router(gitlab_router, prefix="/api")


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": "mr-reviewer",
        "version": "0.1.0",
        "status": "running",
    }


@app.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse()


if __name__ == "__main__":
    import uvicorn

    logger.info(f"Starting Consensus MR Reviewer on {settings.host}:{settings.port}")
    uvicorn.run(
        "mr_reviewer.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
