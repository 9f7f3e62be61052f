import httpx
import structlog

from chatbot.config import Settings
from chatbot.core.exceptions import CompletionError, ErrorCode
from chatbot.services.completion.base import ChatTurn, CompletionProvider

logger = structlog.get_logger()

MOCK_REPLY = "This is a mock AI response. AI API key is not configured."


class OpenAICompletionProvider(CompletionProvider):
    """Chat-completions client for OpenAI-compatible endpoints."""

    name = "openai"

    def __init__(
        self,
        base_url: str,
        api_key: str,
        model: str = "gpt-3.5-turbo",
        system_prompt: str = "You are a helpful assistant.",
        temperature: float = 0.7,
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.system_prompt = system_prompt
        self.temperature = temperature
        self._headers = {"Authorization": f"Bearer {api_key}"}
        self._client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=5.0)
        )

    async def generate_reply(self, conversation: list[ChatTurn]) -> str:
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": self.system_prompt},
                *({"role": turn.role, "content": turn.content} for turn in conversation),
            ],
            "temperature": self.temperature,
        }

        try:
            response = await self._client.post(
                f"{self.base_url}/chat/completions", json=payload, headers=self._headers
            )
        except httpx.TimeoutException:
            logger.warning("completion_timeout", model=self.model)
            raise CompletionError("Request timed out. Please try again.", code=ErrorCode.TIMEOUT)
        except httpx.TransportError as e:
            logger.warning("completion_network_error", model=self.model, error=str(e))
            raise CompletionError(
                "Unable to connect to AI service. Please check your connection.",
                code=ErrorCode.NETWORK_ERROR,
            )

        if response.is_error:
            logger.warning("completion_provider_error", model=self.model, status=response.status_code)
            raise CompletionError("AI provider error", code=ErrorCode.AI_PROVIDER_ERROR)

        try:
            data = response.json()
            return data["choices"][0]["message"]["content"] or ""
        except (ValueError, KeyError, IndexError, TypeError):
            raise CompletionError("AI provider returned an unreadable response", code=ErrorCode.AI_PROVIDER_ERROR)

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()


class MockCompletionProvider(CompletionProvider):
    """Fixed replies for deployments without an API key."""

    name = "mock"

    async def generate_reply(self, conversation: list[ChatTurn]) -> str:
        return MOCK_REPLY


def build_completion_provider(
    config: Settings, http_client: httpx.AsyncClient | None = None
) -> CompletionProvider:
    if not config.ai_api_key:
        logger.info("completion_provider_mock", reason="ai_api_key not configured")
        return MockCompletionProvider()
    return OpenAICompletionProvider(
        base_url=config.ai_base_url,
        api_key=config.ai_api_key,
        model=config.ai_model,
        system_prompt=config.ai_system_prompt,
        temperature=config.ai_temperature,
        timeout=config.ai_timeout,
        http_client=http_client,
    )
