from fastapi import APIRouter, Depends

from chatbot.dependencies import get_completion_provider
from chatbot.schemas.conversations import (
    Conversation,
    ConversationDetail,
    DeleteConversationResponse,
    MessageCreate,
    SendMessageResponse,
)
from chatbot.services.completion.base import CompletionProvider
from chatbot.services.conversations import ConversationService

router = APIRouter()

_service = ConversationService()


@router.post("/api/chats", status_code=201)
async def create_conversation() -> Conversation:
    """Create a new, empty conversation."""
    return await _service.create_conversation()


@router.get("/api/chats")
async def list_conversations() -> list[Conversation]:
    """List all conversations, newest first."""
    return await _service.list_conversations()


@router.get("/api/chats/{conversation_id}")
async def get_conversation(conversation_id: str) -> ConversationDetail:
    """Get a conversation with all its messages."""
    return await _service.get_conversation(conversation_id)


@router.post("/api/chats/{conversation_id}/messages", status_code=201)
async def append_message(
    conversation_id: str,
    body: MessageCreate,
    provider: CompletionProvider = Depends(get_completion_provider),
) -> SendMessageResponse:
    """Store a user message and the assistant's reply."""
    return await _service.append_message(conversation_id, body, provider)


@router.delete("/api/chats/{conversation_id}")
async def delete_conversation(conversation_id: str) -> DeleteConversationResponse:
    """Delete a conversation and all its messages."""
    await _service.delete_conversation(conversation_id)
    return DeleteConversationResponse(id=conversation_id)
