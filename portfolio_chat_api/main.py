"""FastAPI application entrypoint for the Portfolio Chat API."""

from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from portfolio_chat_api import __version__
from portfolio_chat_api.clerk_client import close_clerk_client
from portfolio_chat_api.config import get_settings
from portfolio_chat_api.dependencies import (
    get_identity,
    get_job_fit_scorer,
    get_session_provisioner,
    get_tier,
)
from portfolio_chat_api.errors import (
    AnalysisFailed,
    ConfigurationError,
    QuotaExceeded,
    UpstreamError,
    UsageStoreUnavailable,
    quota_exceeded_message,
)
from portfolio_chat_api.identity import Identity
from portfolio_chat_api.job_fit import JobFitScorer
from portfolio_chat_api.models import (
    AssessmentResult,
    ErrorResponse,
    HealthResponse,
    JobFitRequest,
    PlanResponse,
    QuotaExceededResponse,
    SessionResponse,
    Tier,
    UsageResponse,
)
from portfolio_chat_api.observability import generate_trace_id, set_trace_id
from portfolio_chat_api.openai_client import close_openai_client, get_openai_client
from portfolio_chat_api.session_provisioner import SessionProvisioner
from portfolio_chat_api.usage_store import (
    RedisUsageStore,
    close_usage_store,
    get_usage_store,
)

# Configure structlog
structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()
settings = get_settings()

# Rate limiter
limiter = Limiter(key_func=get_remote_address)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan handler for startup/shutdown."""
    logger.info("Starting Portfolio Chat API", version=__version__)

    get_usage_store()

    try:
        await get_openai_client()
        logger.info("OpenAI client initialized")
    except Exception as e:
        logger.warning("Failed to initialize OpenAI client", error=str(e))

    yield

    # Cleanup on shutdown
    logger.info("Shutting down Portfolio Chat API")
    await close_openai_client()
    await close_clerk_client()
    await close_usage_store()


# Create FastAPI app
app = FastAPI(
    title="Portfolio Chat API",
    description="Quota-gated AI chat sessions and job fit scoring for a portfolio site",
    version=__version__,
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Trace ID middleware for request correlation
@app.middleware("http")
async def trace_id_middleware(request: Request, call_next):
    """Add trace ID to every request for log correlation."""
    trace_id = request.headers.get("X-Trace-ID", generate_trace_id())
    set_trace_id(trace_id)

    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(trace_id=trace_id)

    response = await call_next(request)

    response.headers["X-Trace-ID"] = trace_id
    return response


# Add rate limiter
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Add Prometheus metrics
Instrumentator().instrument(app).expose(app)


# =============================================================================
# Error Handlers
# =============================================================================


@app.exception_handler(QuotaExceeded)
async def quota_exceeded_handler(request: Request, exc: QuotaExceeded) -> JSONResponse:
    policy = get_settings().quota_policy
    body = QuotaExceededResponse(
        error=quota_exceeded_message(exc, free_limit=policy.free, recruiter_limit=policy.recruiter),
        code="quota_exceeded",
        limit=exc.limit,
        tier=exc.tier,
        is_guest=exc.is_guest,
    )
    return JSONResponse(status_code=429, content=body.model_dump(mode="json"))


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError) -> JSONResponse:
    logger.error("Service misconfigured", error=str(exc))
    body = ErrorResponse(
        error="Chat service is not configured. Please contact the administrator.",
        code="configuration_error",
    )
    return JSONResponse(status_code=500, content=body.model_dump())


@app.exception_handler(UpstreamError)
async def upstream_error_handler(request: Request, exc: UpstreamError) -> JSONResponse:
    logger.error(
        "Upstream service error",
        status=exc.status_code,
        body=exc.body[:500],
        error=str(exc),
    )
    body = ErrorResponse(
        error="Failed to create chat session. Please try again later.",
        code="upstream_error",
    )
    return JSONResponse(status_code=502, content=body.model_dump())


@app.exception_handler(UsageStoreUnavailable)
async def usage_store_error_handler(request: Request, exc: UsageStoreUnavailable) -> JSONResponse:
    logger.error("Usage store unavailable", error=str(exc))
    body = ErrorResponse(
        error="Usage tracking is temporarily unavailable. Please try again later.",
        code="usage_store_unavailable",
    )
    return JSONResponse(status_code=503, content=body.model_dump())


@app.exception_handler(AnalysisFailed)
async def analysis_failed_handler(request: Request, exc: AnalysisFailed) -> JSONResponse:
    body = ErrorResponse(error="Failed to analyze job fit", code="analysis_failed")
    return JSONResponse(status_code=500, content=body.model_dump())


# =============================================================================
# Health Endpoints
# =============================================================================


@app.get("/health", response_model=HealthResponse)
@app.get("/api/v1/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Check the health of the API and its usage store."""
    store = get_usage_store()
    connected = await store.ping()

    return HealthResponse(
        status="healthy" if connected else "degraded",
        usage_store_connected=connected,
        usage_store_backend="redis" if isinstance(store, RedisUsageStore) else "memory",
        version=__version__,
    )


# =============================================================================
# Chat Session Endpoints
# =============================================================================


@app.post("/api/v1/chat/session", response_model=SessionResponse)
async def create_session(
    identity: Identity = Depends(get_identity),
    tier: Tier = Depends(get_tier),
    provisioner: SessionProvisioner = Depends(get_session_provisioner),
) -> SessionResponse:
    """
    Create a ChatKit session if the caller has messages left today.

    Guests get 3 messages a day, signed-in free users 5, recruiters 20.
    """
    logger.info("Chat session requested", is_guest=identity.is_guest, tier=tier.value)
    client_secret = await provisioner.provision(identity, tier)
    return SessionResponse(client_secret=client_secret)


@app.get("/api/v1/chat/usage", response_model=UsageResponse)
async def get_message_usage(
    identity: Identity = Depends(get_identity),
    tier: Tier = Depends(get_tier),
    provisioner: SessionProvisioner = Depends(get_session_provisioner),
) -> UsageResponse:
    """Today's message usage and plan for the caller."""
    status = await provisioner.usage(identity, tier)
    return UsageResponse(
        allowed=status.allowed,
        remaining=status.remaining,
        limit=status.limit,
        tier=tier,
    )


@app.get("/api/v1/plan", response_model=PlanResponse)
async def get_current_plan(tier: Tier = Depends(get_tier)) -> PlanResponse:
    """The caller's subscription plan, for upgrade prompts."""
    return PlanResponse(tier=tier)


# =============================================================================
# Job Fit Endpoints
# =============================================================================


@app.post("/api/job-fit", response_model=AssessmentResult, response_model_by_alias=True)
@app.post("/api/v1/job-fit", response_model=AssessmentResult, response_model_by_alias=True)
@limiter.limit(f"{settings.rate_limit_per_minute}/minute")
async def analyze_job_fit(
    request: Request,
    job_fit_request: JobFitRequest,
    scorer: JobFitScorer = Depends(get_job_fit_scorer),
) -> AssessmentResult:
    """
    Score the candidate against a pasted job description.

    - **jobDescription**: The job description text

    Returns matchScore (0-100), summary, strengths, gaps and verdict.
    """
    logger.info(
        "Job fit request",
        job_description_length=len(job_fit_request.job_description),
    )
    return await scorer.analyze(job_fit_request.job_description)


# =============================================================================
# Entry point
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "portfolio_chat_api.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.is_development,
    )
