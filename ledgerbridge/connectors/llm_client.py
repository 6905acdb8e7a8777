"""OpenAI-compatible chat-completion client used for categorization and analysis."""

from typing import Any, Optional

import httpx
import structlog

from ledgerbridge.config import Settings, get_settings

logger = structlog.get_logger(__name__)


class LLMClientError(Exception):
    """Raised when the chat model is unconfigured, unreachable or returns nothing."""

    pass


class ChatCompletionClient:
    """Client for an OpenAI-compatible ``/chat/completions`` endpoint.

    Callers treat every failure as recoverable: categorization falls back to
    keyword heuristics and the analysis agent to a templated summary.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
    ):
        settings = settings or get_settings()
        self._api_key = api_key if api_key is not None else settings.llm_api_key
        self._base_url = (base_url or settings.llm_base_url).rstrip("/")
        self._model = model or settings.llm_model
        self._temperature = settings.llm_temperature if temperature is None else temperature

        self._client = http_client or httpx.AsyncClient(timeout=settings.llm_timeout_seconds)
        self._logger = logger.bind(client="chat_completion", model=self._model)

    @property
    def is_configured(self) -> bool:
        return bool(self._api_key)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def complete(
        self,
        messages: list[dict[str, str]],
        temperature: Optional[float] = None,
    ) -> str:
        """Send a message list and return the first completion's text.

        Args:
            messages: OpenAI-style ``{"role", "content"}`` messages.
            temperature: Optional override of the configured temperature.

        Returns:
            The completion content, stripped.

        Raises:
            LLMClientError: On missing configuration, HTTP failure or empty output.
        """
        if not self.is_configured:
            raise LLMClientError("Chat model API key is not configured")

        payload: dict[str, Any] = {
            "model": self._model,
            "messages": messages,
            "temperature": self._temperature if temperature is None else temperature,
        }

        self._logger.debug("chat_completion_request", message_count=len(messages))

        try:
            response = await self._client.post(
                f"{self._base_url}/chat/completions",
                json=payload,
                headers={
                    "Authorization": f"Bearer {self._api_key}",
                    "Content-Type": "application/json",
                },
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            self._logger.warning(
                "chat_completion_failed",
                status_code=e.response.status_code,
                error=e.response.text[:500],
            )
            raise LLMClientError(
                f"Chat model error: {e.response.status_code} {e.response.text}"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            self._logger.warning("chat_completion_error", error=str(e))
            raise LLMClientError(f"Chat model request failed: {e}") from e

        if not isinstance(data, dict):
            raise LLMClientError("Chat model returned an unexpected response body")

        choices = data.get("choices") or []
        content: Any = ""
        if choices:
            choice = choices[0] if isinstance(choices, list) else None
            if not isinstance(choice, dict):
                raise LLMClientError("Chat model returned a malformed choice")
            message = choice.get("message") or {}
            content = message.get("content") if isinstance(message, dict) else None
            content = content or ""

        if not isinstance(content, str):
            raise LLMClientError("Chat model returned non-text content")

        if not content.strip():
            raise LLMClientError("Chat model returned an empty completion")

        usage = data.get("usage")
        if not isinstance(usage, dict):
            usage = {}
        self._logger.debug(
            "chat_completion_received",
            prompt_tokens=usage.get("prompt_tokens", 0),
            completion_tokens=usage.get("completion_tokens", 0),
        )

        return content.strip()
