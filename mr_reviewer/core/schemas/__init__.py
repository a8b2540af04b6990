"""Core schemas for API responses."""

from mr_reviewer.core.schemas.responses import ErrorResponse, HealthResponse

__all__ = ["ErrorResponse", "HealthResponse"]
