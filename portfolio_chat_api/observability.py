"""Observability utilities: trace IDs, quota/LLM metrics, and request logging.

This module provides:
- Trace ID generation and propagation via context vars
- Prometheus metrics for quota decisions, plan lookups and session provisioning
- Structured logging helpers for LLM request/response correlation
"""

import secrets
import time
from contextvars import ContextVar
from dataclasses import dataclass

import structlog
from prometheus_client import Counter, Gauge, Histogram

logger = structlog.get_logger()

# =============================================================================
# Trace ID Context
# =============================================================================

# Context variable for trace ID propagation across async calls
trace_id_ctx: ContextVar[str] = ContextVar("trace_id", default="")


def generate_trace_id() -> str:
    """Generate cryptographically secure trace ID for request tracking."""
    return secrets.token_hex(16)


def get_trace_id() -> str:
    """Get current trace ID from context, or empty string if not set."""
    return trace_id_ctx.get()


def set_trace_id(trace_id: str) -> None:
    """Set trace ID in context."""
    trace_id_ctx.set(trace_id)


# =============================================================================
# Prometheus Metrics for Quota and Sessions
# =============================================================================

quota_decisions_total = Counter(
    "quota_decisions_total",
    "Chat session quota decisions",
    ["tier", "guest", "outcome"],  # outcome: allowed, rejected
)

plan_resolution_failures_total = Counter(
    "plan_resolution_failures_total",
    "Plan lookups that failed and fell back to the free tier",
)

chat_sessions_total = Counter(
    "chat_sessions_total",
    "ChatKit session provisioning attempts",
    ["status"],  # values: created, upstream_error, config_error
)

# =============================================================================
# Prometheus Metrics for LLM
# =============================================================================

llm_requests_total = Counter(
    "llm_requests_total",
    "Total LLM API requests",
    ["model", "status"],
)

llm_latency_seconds = Histogram(
    "llm_latency_seconds",
    "LLM response latency in seconds",
    ["model"],
    buckets=[0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0],
)

llm_active_requests = Gauge(
    "llm_active_requests",
    "Currently active LLM requests",
    ["model"],
)


def record_quota_decision(tier: str, is_guest: bool, allowed: bool) -> None:
    """Count one quota decision."""
    quota_decisions_total.labels(
        tier=tier,
        guest=str(is_guest).lower(),
        outcome="allowed" if allowed else "rejected",
    ).inc()


# =============================================================================
# LLM Payload Logging
# =============================================================================


@dataclass
class LLMRequestLog:
    """Structured log data for LLM requests."""

    trace_id: str
    model: str
    purpose: str
    system_prompt_chars: int
    user_message_chars: int
    timestamp: float = 0.0

    def __post_init__(self) -> None:
        if self.timestamp == 0.0:
            self.timestamp = time.time()


def log_llm_request(model: str, purpose: str, system_prompt: str, user_message: str) -> LLMRequestLog:
    """Log an LLM request; returns the log record for correlation with the response."""
    log_data = LLMRequestLog(
        trace_id=get_trace_id(),
        model=model,
        purpose=purpose,
        system_prompt_chars=len(system_prompt),
        user_message_chars=len(user_message),
    )

    logger.info(
        "llm_request",
        trace_id=log_data.trace_id,
        model=log_data.model,
        purpose=log_data.purpose,
        system_prompt_chars=log_data.system_prompt_chars,
        user_message_chars=log_data.user_message_chars,
    )

    llm_active_requests.labels(model=model).inc()
    return log_data


def log_llm_response(
    request_log: LLMRequestLog,
    tokens_total: int = 0,
    finish_reason: str | None = None,
    error: str | None = None,
) -> None:
    """Log an LLM response with metrics and correlation."""
    latency_ms = int((time.time() - request_log.timestamp) * 1000)

    if error:
        logger.error(
            "llm_response",
            trace_id=request_log.trace_id,
            model=request_log.model,
            purpose=request_log.purpose,
            latency_ms=latency_ms,
            error=error,
        )
        status = "error"
    else:
        logger.info(
            "llm_response",
            trace_id=request_log.trace_id,
            model=request_log.model,
            purpose=request_log.purpose,
            latency_ms=latency_ms,
            tokens_total=tokens_total,
            finish_reason=finish_reason,
        )
        status = "success"

    llm_active_requests.labels(model=request_log.model).dec()
    llm_requests_total.labels(model=request_log.model, status=status).inc()
    llm_latency_seconds.labels(model=request_log.model).observe(latency_ms / 1000.0)
