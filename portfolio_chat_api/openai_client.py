"""OpenAI client for ChatKit session creation and JSON chat completions."""

import json
import secrets
from dataclasses import dataclass
from typing import Any

import httpx
import structlog

from portfolio_chat_api.config import get_settings
from portfolio_chat_api.errors import ConfigurationError, UpstreamError

logger = structlog.get_logger()

CHATKIT_BETA_HEADER = "chatkit_beta=v1"


@dataclass
class LLMResponse:
    """Non-streaming response from the LLM."""

    content: str
    tokens_used: int
    finish_reason: str | None = None


class OpenAIClient:
    """Async client for the OpenAI API."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        model: str | None = None,
        timeout: float | None = None,
    ):
        """Initialize the OpenAI client.

        Args:
            api_key: OpenAI API key. Defaults to config value.
            base_url: API base URL. Defaults to config value.
            model: Chat completion model. Defaults to config value.
            timeout: Request timeout in seconds. Defaults to config value.
        """
        settings = get_settings()
        self._api_key = api_key or settings.openai_api_key
        self._base_url = base_url or settings.openai_base_url
        self._model = model or settings.llm_model
        self._timeout = timeout or settings.http_timeout_seconds
        self._client: httpx.AsyncClient | None = None

    @property
    def model(self) -> str:
        return self._model

    @property
    def is_configured(self) -> bool:
        """Check if the client is properly configured with an API key."""
        return bool(self._api_key and self._api_key.startswith("sk-"))

    async def connect(self) -> None:
        """Create the HTTP client.

        In mock mode (MOCK_OPENAI=true) without a key, skips creating a real
        HTTP client since all requests will be served by mock handlers.
        """
        settings = get_settings()
        if settings.mock_openai and not self.is_configured:
            logger.info("OpenAI client in mock mode, skipping HTTP client creation")
            return

        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers={
                "Authorization": f"Bearer {self._api_key}",
                "Content-Type": "application/json",
            },
            timeout=httpx.Timeout(self._timeout, connect=10.0),
        )
        logger.info("OpenAI client connected", model=self._model)

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.info("OpenAI client closed")

    def _use_mock(self) -> bool:
        """Decide between mock and real calls; fail loudly if neither is possible."""
        if self.is_configured:
            return False
        if get_settings().mock_openai:
            return True
        error_msg = (
            "OPENAI_API_KEY not configured with MOCK_OPENAI=false. "
            "Either set OPENAI_API_KEY or set MOCK_OPENAI=true for testing."
        )
        logger.error(error_msg)
        raise ConfigurationError(error_msg)

    async def _post(self, path: str, payload: dict[str, Any], headers: dict[str, str] | None = None) -> dict:
        if not self._client:
            await self.connect()

        try:
            response = await self._client.post(path, json=payload, headers=headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            self._handle_http_error(e)
        except httpx.RequestError as e:
            logger.error("OpenAI API unreachable", path=path, error=str(e))
            raise UpstreamError(f"OpenAI API unreachable: {e}") from e

        try:
            return response.json()
        except ValueError as e:
            raise UpstreamError(
                "OpenAI API returned invalid JSON",
                status_code=response.status_code,
                body=response.text[:500],
            ) from e

    def _handle_http_error(self, error: httpx.HTTPStatusError) -> None:
        """Translate an HTTP error from OpenAI into an UpstreamError."""
        status = error.response.status_code
        try:
            body = error.response.text
        except Exception:
            body = str(error)

        logger.error("OpenAI API error", status=status, body=body[:500])
        raise UpstreamError(f"OpenAI API error ({status}): {body}", status_code=status, body=body) from error

    async def create_chatkit_session(self, workflow_id: str, user: str) -> str:
        """Create a ChatKit session and return its client secret.

        Args:
            workflow_id: ChatKit workflow to attach the session to.
            user: Stable user identifier (Clerk id or generated guest id).

        Raises:
            ConfigurationError: If no API key is configured and mock mode is off.
            UpstreamError: If the API call fails.
        """
        if not workflow_id:
            raise ConfigurationError("CHATKIT_WORKFLOW_ID not configured")

        if self._use_mock():
            logger.info("MOCK_OPENAI=true: Using mock ChatKit session")
            return f"mock_secret_{secrets.token_hex(8)}"

        data = await self._post(
            "/chatkit/sessions",
            {"workflow": {"id": workflow_id}, "user": user},
            headers={"OpenAI-Beta": CHATKIT_BETA_HEADER},
        )

        client_secret = data.get("client_secret") if isinstance(data, dict) else None
        if not isinstance(client_secret, str) or not client_secret:
            raise UpstreamError("ChatKit response missing client_secret", body=json.dumps(data)[:500])

        logger.info("ChatKit session created")
        return client_secret

    async def complete_json(self, system_prompt: str, user_message: str) -> LLMResponse:
        """Request a chat completion constrained to a JSON object.

        Raises:
            ConfigurationError: If no API key is configured and mock mode is off.
            UpstreamError: If the request fails or the payload has no content.
        """
        if self._use_mock():
            logger.info("MOCK_OPENAI=true: Using mock JSON completion")
            return self._mock_completion()

        payload = {
            "model": self._model,
            "response_format": {"type": "json_object"},
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_message},
            ],
        }
        data = await self._post("/chat/completions", payload)

        try:
            choice = data["choices"][0]
            content = choice["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise UpstreamError("Completion response missing content", body=json.dumps(data)[:500]) from e

        usage = data.get("usage") or {}
        return LLMResponse(
            content=content,
            tokens_used=usage.get("total_tokens", 0),
            finish_reason=choice.get("finish_reason"),
        )

    def _mock_completion(self) -> LLMResponse:
        """Return a fixed, schema-valid assessment for testing."""
        content = json.dumps(
            {
                "matchScore": 72,
                "summary": "This is a mock assessment (MOCK_OPENAI=true). "
                "Set OPENAI_API_KEY to enable real analysis.",
                "strengths": ["Python", "FastAPI", "LLM integrations"],
                "gaps": ["Mock response, no real gaps analysed"],
                "verdict": "Potential Match",
            }
        )
        return LLMResponse(content=content, tokens_used=0, finish_reason="stop")


# Global client instance
_openai_client: OpenAIClient | None = None


async def get_openai_client() -> OpenAIClient:
    """Get or create the global OpenAI client instance."""
    global _openai_client
    if _openai_client is None:
        _openai_client = OpenAIClient()
        await _openai_client.connect()
    return _openai_client


async def close_openai_client() -> None:
    """Close the global OpenAI client."""
    global _openai_client
    if _openai_client:
        await _openai_client.close()
        _openai_client = None


def reset_openai_client() -> None:
    """Reset the global OpenAI client (for testing)."""
    global _openai_client
    _openai_client = None
