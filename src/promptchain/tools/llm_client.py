"""
LLM client for the Unbound (OpenAI-compatible) chat completions API.
"""

import asyncio
import logging
from typing import Optional, Dict, Any, List

import httpx

from promptchain.models.completion import CompletionResult, TokenUsage
from promptchain.models.workflow import DEFAULT_MODEL

logger = logging.getLogger(__name__)


# Cost per 1K tokens
MODEL_COSTS: Dict[str, Dict[str, float]] = {
    "kimi-k2p5": {"input": 0.002, "output": 0.006},
    "kimi-k2-instruct-0905": {"input": 0.001, "output": 0.003},
}

AVAILABLE_MODELS: List[Dict[str, str]] = [
    {"id": "kimi-k2p5", "name": "Kimi K2P5", "provider": "Moonshot", "tier": "premium"},
    {"id": "kimi-k2-instruct-0905", "name": "Kimi K2 Instruct", "provider": "Moonshot", "tier": "standard"},
]

class LLMClientError(Exception):
    """Raised when a completion cannot be obtained after the client's own retries."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


def calculate_cost(model: str, input_tokens: int, output_tokens: int) -> float:
    """Cost of a call; unknown models are priced as the default model."""
    costs = MODEL_COSTS.get(model) or MODEL_COSTS[DEFAULT_MODEL]
    return (input_tokens / 1000 * costs["input"]) + (output_tokens / 1000 * costs["output"])


def build_prompt(prompt: str, context: str = "") -> str:
    """Prefix the prompt with context carried over from the previous step."""
    if not context:
        return prompt
    return f"Context from previous step:\n{context}\n\n---\n\n{prompt}"


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        data = None
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str) and error:
            return error
    return f"LLM call failed: {response.status_code} - {response.text}"


class LLMClient:
    """
    Async HTTP client for the completion provider.

    Retries transport failures and 5xx responses with a linear backoff; other
    errors are raised on the first attempt.
    """

    def __init__(
        self,
        base_url: str = "https://api.getunbound.ai",
        api_key: str = "",
        timeout: float = 60.0,
        max_retries: int = 3,
        backoff_seconds: float = 2.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize LLM client.

        Args:
            base_url: Provider URL
            api_key: API key for authentication
            timeout: Request timeout in seconds
            max_retries: Attempts per call, including the first one
            backoff_seconds: Delay multiplier between attempts (attempt * backoff)
            transport: Optional httpx transport, used by tests
        """
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.backoff_seconds = backoff_seconds
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self):
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def call(
        self,
        prompt: str,
        model: str = DEFAULT_MODEL,
        context: str = "",
        temperature: float = 0.7,
        max_tokens: int = 4096,
    ) -> CompletionResult:
        """
        Run a single-message chat completion.

        Args:
            prompt: The prompt to send
            model: Model ID to use
            context: Optional context from the previous step, prepended to the prompt
            temperature: Sampling temperature
            max_tokens: Maximum output tokens

        Returns:
            Content, token usage and cost

        Raises:
            LLMClientError: when the provider keeps failing or rejects the request
        """
        client = await self._get_client()
        payload = {
            "model": model,
            "messages": [{"role": "user", "content": build_prompt(prompt, context)}],
            "max_tokens": max_tokens,
            "temperature": temperature,
        }

        last_error: Optional[LLMClientError] = None
        for attempt in range(1, self.max_retries + 1):
            try:
                response = await client.post("/v1/chat/completions", json=payload)
            except httpx.TransportError as e:
                last_error = LLMClientError(str(e) or type(e).__name__)
                retryable = True
            else:
                if response.status_code == 200:
                    result = self._parse_response(model, response.json())
                    logger.info(f"LLM call succeeded (attempt {attempt}): {result.tokens.total} tokens")
                    return result
                last_error = LLMClientError(_error_message(response), status_code=response.status_code)
                retryable = response.status_code >= 500

            if retryable and attempt < self.max_retries:
                delay = attempt * self.backoff_seconds
                logger.warning(
                    f"LLM call failed (attempt {attempt}/{self.max_retries}), "
                    f"retrying in {delay:.1f}s: {last_error.message}"
                )
                await asyncio.sleep(delay)
                continue

            logger.error(f"LLM call failed: {last_error.message}")
            raise last_error

        raise last_error

    def _parse_response(self, model: str, data: Dict[str, Any]) -> CompletionResult:
        choices = data.get("choices") or [{}]
        message = choices[0].get("message") or {}
        content = message.get("content") or ""

        usage = data.get("usage") or {}
        input_tokens = usage.get("prompt_tokens") or 0
        output_tokens = usage.get("completion_tokens") or 0

        return CompletionResult(
            content=content,
            tokens=TokenUsage(
                input=input_tokens,
                output=output_tokens,
                total=input_tokens + output_tokens,
            ),
            cost=calculate_cost(model, input_tokens, output_tokens),
        )

    def get_models(self) -> List[Dict[str, str]]:
        """Models offered to workflow authors."""
        return AVAILABLE_MODELS
