"""Chat-completion client with exponential backoff.

429 responses and transport failures are retried, waiting
``initial_delay_ms * 2**attempt`` between attempts. Any other response is
handed back as-is so the caller can branch on its status.
"""

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception_type,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
)

from app.core.config import settings

logger = logging.getLogger(__name__)


class LLMError(Exception):
    pass


class LLMRetryExhaustedError(LLMError):
    pass


class LLMResponseError(LLMError):
    def __init__(self, status_code: int, body: str):
        super().__init__(f"LLM request failed: {status_code} {body}")
        self.status_code = status_code
        self.body = body


def _rate_limited(response: httpx.Response) -> bool:
    return response.status_code == 429


class LLMGateway:
    def __init__(
        self,
        api_url: str,
        api_key: Optional[str],
        model: str,
        max_retries: int = 3,
        initial_delay_ms: int = 1000,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.api_url = api_url
        self.api_key = api_key
        self.model = model
        self.max_retries = max(1, max_retries)
        self.initial_delay_ms = initial_delay_ms
        self._transport = transport
        self._sleep = sleep

    async def _send(self, payload: Dict[str, Any]) -> httpx.Response:
        # No timeout on completions; the retry budget bounds the call
        async with httpx.AsyncClient(timeout=None, transport=self._transport) as client:
            return await client.post(
                self.api_url,
                json=payload,
                headers={
                    "Content-Type": "application/json",
                    "Authorization": f"Bearer {self.api_key}",
                },
            )

    def _log_retry(self, retry_state: RetryCallState) -> None:
        delay_ms = retry_state.next_action.sleep * 1000
        attempt = retry_state.attempt_number
        if retry_state.outcome.failed:
            logger.error(
                f"Network error calling {self.api_url}: {retry_state.outcome.exception()!r}. "
                f"Retrying in {delay_ms:.0f}ms... (Attempt {attempt}/{self.max_retries})"
            )
        else:
            logger.warning(
                f"Rate limit reached. Retrying in {delay_ms:.0f}ms... "
                f"(Attempt {attempt}/{self.max_retries})"
            )

    async def post(self, payload: Dict[str, Any]) -> httpx.Response:
        """
        POST ``payload`` to the completion endpoint, retrying on 429 / network errors.

        Returns:
            The first response that is not a 429 (successful or not)

        Raises:
            LLMRetryExhaustedError: every attempt was rate limited or failed in transport
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_retries),
            wait=wait_exponential(multiplier=self.initial_delay_ms / 1000, exp_base=2),
            retry=(
                retry_if_exception_type(httpx.TransportError)
                | retry_if_result(_rate_limited)
            ),
            sleep=self._sleep,
            before_sleep=self._log_retry,
        )
        try:
            return await retrying(self._send, payload)
        except RetryError as e:
            raise LLMRetryExhaustedError(
                f"Failed to fetch from {self.api_url} after {self.max_retries} attempts."
            ) from e

    async def chat(
        self, messages: List[Dict[str, str]], temperature: float, **extra: Any
    ) -> str:
        payload = {
            "model": self.model,
            "messages": messages,
            "temperature": temperature,
            **extra,
        }
        response = await self.post(payload)
        if not response.is_success:
            raise LLMResponseError(response.status_code, response.text)

        try:
            data = response.json()
        except ValueError:
            raise LLMResponseError(response.status_code, response.text)
        logger.debug(f"LLM raw response: {json.dumps(data)}")

        try:
            return data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError):
            return ""

    async def complete(self, prompt: str, temperature: float) -> str:
        """Send ``prompt`` as the only (system) message."""
        return await self.chat([{"role": "system", "content": prompt}], temperature)


def get_llm_gateway() -> LLMGateway:
    return LLMGateway(
        api_url=settings.LLM_API_URL,
        api_key=settings.MISTRAL_API_KEY,
        model=settings.LLM_MODEL,
        max_retries=settings.LLM_MAX_RETRIES,
        initial_delay_ms=settings.LLM_INITIAL_DELAY_MS,
    )


def get_assistant_gateway() -> LLMGateway:
    return LLMGateway(
        api_url=settings.ASSISTANT_API_URL,
        api_key=settings.ASSISTANT_API_KEY,
        model=settings.ASSISTANT_MODEL,
        max_retries=1,
    )
