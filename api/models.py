"""
API response models for hostgate.

Auth outcomes are redirects and need no body; these Pydantic v2 models cover
the JSON the service does return: the health check and the uniform error
envelope used by the exception handlers in api/main.py.
"""

from typing import Optional

from pydantic import BaseModel, Field


class ErrorDetail(BaseModel):
    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Envelope for every non-redirect error response."""

    error: ErrorDetail


class HealthResponse(BaseModel):
    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
    providers: int = 0
