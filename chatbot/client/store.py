from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import TypeVar

import httpx
import structlog

from chatbot.client.resilient import INVALID_RESPONSE_MESSAGE, ResilientRequestClient
from chatbot.config import Settings, settings
from chatbot.core.exceptions import ChatError, ErrorCode, ReplyFailedError
from chatbot.schemas.conversations import (
    Conversation,
    ConversationDetail,
    Message,
    SendMessageResponse,
)

logger = structlog.get_logger()

T = TypeVar("T")


class ConversationStore(ABC):
    """Conversation store operations the client state machine relies on.

    Every operation raises ChatError with a classified code on failure.
    """

    @abstractmethod
    async def create_conversation(self) -> Conversation:
        ...

    @abstractmethod
    async def list_conversations(self) -> list[Conversation]:
        """Conversations, newest first."""
        ...

    @abstractmethod
    async def get_conversation_detail(self, conversation_id: str) -> ConversationDetail:
        """Raises NOT_FOUND for an unknown id."""
        ...

    @abstractmethod
    async def append_message(
        self,
        conversation_id: str,
        content: str,
        retry_message_id: str | None = None,
        replace_from_message_id: str | None = None,
    ) -> SendMessageResponse:
        """Store a user message and return it with the assistant reply.

        Raises ReplyFailedError when the user message was stored but no reply
        was produced.
        """
        ...

    @abstractmethod
    async def delete_conversation(self, conversation_id: str) -> None:
        """Deleting an unknown conversation succeeds."""
        ...

    @abstractmethod
    async def check_reachability(self) -> None:
        """Raise ChatError when the store cannot be reached."""
        ...


def _as_reply_failure(error: ChatError) -> ChatError:
    user_message = error.details.get("userMessage")
    if not isinstance(user_message, dict):
        return error
    return ReplyFailedError(
        error.message,
        user_message=Message.model_validate(user_message),
        code=error.code,
        updated_title=error.details.get("updatedTitle"),
        status=error.status,
    )


def _decode(response: httpx.Response, parse: Callable[[object], T]) -> T:
    """Parse a success body, classifying malformed payloads as HTTP_ERROR."""
    try:
        return parse(response.json())
    except (ValueError, TypeError) as e:
        logger.warning("unexpected_response_body", url=str(response.request.url), error=str(e))
        raise ChatError(ErrorCode.HTTP_ERROR, INVALID_RESPONSE_MESSAGE, status=response.status_code)


def _persisted_user_message_id(response: httpx.Response) -> str | None:
    """Id of the user message a failed send still persisted, if any."""
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict) and isinstance(body.get("userMessage"), dict):
        return body["userMessage"].get("id")
    return None


class HttpConversationStore(ConversationStore):
    """Store client for the chat backend's REST API."""

    def __init__(
        self,
        base_url: str,
        http_client: httpx.AsyncClient | None = None,
        requester: ResilientRequestClient | None = None,
        send_timeout: float = 45.0,
        health_timeout: float = 5.0,
    ):
        self.base_url = base_url.rstrip("/")
        self._owns_client = http_client is None
        # Per-attempt timeouts are enforced by the requester
        self._client = http_client or httpx.AsyncClient(timeout=None)
        self._requester = requester or ResilientRequestClient()
        self._send_timeout = send_timeout
        self._health_timeout = health_timeout

    @classmethod
    def from_settings(
        cls, config: Settings = settings, http_client: httpx.AsyncClient | None = None
    ) -> "HttpConversationStore":
        return cls(
            base_url=config.chat_api_url,
            http_client=http_client,
            requester=ResilientRequestClient(
                timeout=config.chat_request_timeout,
                max_retries=config.chat_max_retries,
                initial_delay=config.chat_retry_initial_delay,
            ),
            send_timeout=config.chat_send_timeout,
            health_timeout=config.chat_health_timeout,
        )

    async def create_conversation(self) -> Conversation:
        response = await self._requester.execute(
            lambda: self._client.post(f"{self.base_url}/api/chats")
        )
        return _decode(response, Conversation.model_validate)

    async def list_conversations(self) -> list[Conversation]:
        response = await self._requester.execute(
            lambda: self._client.get(f"{self.base_url}/api/chats")
        )
        return _decode(response, lambda body: [Conversation.model_validate(item) for item in body])

    async def get_conversation_detail(self, conversation_id: str) -> ConversationDetail:
        response = await self._requester.execute(
            lambda: self._client.get(f"{self.base_url}/api/chats/{conversation_id}")
        )
        return _decode(response, ConversationDetail.model_validate)

    async def append_message(
        self,
        conversation_id: str,
        content: str,
        retry_message_id: str | None = None,
        replace_from_message_id: str | None = None,
    ) -> SendMessageResponse:
        url = f"{self.base_url}/api/chats/{conversation_id}/messages"
        body: dict = {"content": content}
        if retry_message_id:
            body["retryMessageId"] = retry_message_id
        if replace_from_message_id:
            body["replaceFromMessageId"] = replace_from_message_id

        async def _post() -> httpx.Response:
            response = await self._client.post(url, json=body)
            if response.status_code >= 500:
                persisted_id = _persisted_user_message_id(response)
                if persisted_id:
                    # Later attempts regenerate the reply for the stored message
                    body.pop("replaceFromMessageId", None)
                    body["retryMessageId"] = persisted_id
            return response

        try:
            response = await self._requester.execute(_post, timeout=self._send_timeout)
        except ChatError as error:
            raise _as_reply_failure(error)
        return _decode(response, SendMessageResponse.model_validate)

    async def delete_conversation(self, conversation_id: str) -> None:
        try:
            await self._requester.execute(
                lambda: self._client.delete(f"{self.base_url}/api/chats/{conversation_id}")
            )
        except ChatError as error:
            if error.code != ErrorCode.NOT_FOUND.value:
                raise
            logger.debug("conversation_already_deleted", chat_id=conversation_id)

    async def check_reachability(self) -> None:
        await self._requester.attempt(
            lambda: self._client.get(f"{self.base_url}/health"),
            timeout=self._health_timeout,
        )

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
