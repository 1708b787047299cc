"""Pydantic models for API requests and responses."""

from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

# =============================================================================
# Domain Enums
# =============================================================================


class Tier(str, Enum):
    """Subscription tier governing the daily message allowance."""

    FREE = "free"
    RECRUITER = "recruiter"


class Verdict(str, Enum):
    """Overall job fit verdict returned by the scorer."""

    HIGH_MATCH = "High Match"
    POTENTIAL_MATCH = "Potential Match"
    LOW_MATCH = "Low Match"


# =============================================================================
# Chat Session API Models
# =============================================================================


class SessionResponse(BaseModel):
    """Response for the chat session endpoint."""

    client_secret: str = Field(..., description="ChatKit client secret for the widget")


class UsageResponse(BaseModel):
    """Current daily message usage for the caller."""

    allowed: bool = Field(..., description="Whether another message may be sent today")
    remaining: int = Field(..., ge=0, description="Messages left today")
    limit: int = Field(..., ge=0, description="Daily message allowance")
    tier: Tier = Field(..., description="Resolved subscription tier")


class PlanResponse(BaseModel):
    """Response for the current plan endpoint."""

    tier: Tier = Field(..., description="Resolved subscription tier")


class ErrorResponse(BaseModel):
    """Error body returned by the exception handlers."""

    error: str = Field(..., description="Human readable error message")
    code: str = Field(..., description="Machine readable error kind")


class QuotaExceededResponse(ErrorResponse):
    """Error body for a rejected chat session."""

    limit: int = Field(..., description="Daily message allowance that was reached")
    tier: Tier = Field(..., description="Resolved subscription tier")
    is_guest: bool = Field(..., description="Whether the caller is signed out")


# =============================================================================
# Job Fit API Models
# =============================================================================


class JobFitRequest(BaseModel):
    """Request body for the job fit endpoint."""

    model_config = ConfigDict(populate_by_name=True)

    job_description: str = Field(
        ...,
        alias="jobDescription",
        min_length=1,
        max_length=20000,
        description="Job description to compare against the résumé",
    )

    @field_validator("job_description")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("jobDescription must not be blank")
        return value


class AssessmentResult(BaseModel):
    """Structured job fit assessment, field names match the UI contract."""

    model_config = ConfigDict(populate_by_name=True)

    match_score: int = Field(..., alias="matchScore", ge=0, le=100)
    summary: str
    strengths: list[str] = Field(default_factory=list)
    gaps: list[str] = Field(default_factory=list)
    verdict: Verdict


# =============================================================================
# Health API Models
# =============================================================================


class HealthResponse(BaseModel):
    """Response for health check endpoint."""

    status: Literal["healthy", "degraded", "unhealthy"] = Field(..., description="Service status")
    usage_store_connected: bool = Field(..., description="Usage store reachability")
    usage_store_backend: Literal["redis", "memory"] = Field(..., description="Usage store kind")
    version: str = Field(..., description="API version")
