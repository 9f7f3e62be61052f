from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

DEFAULT_TITLE = "New Chat"
TITLE_MAX_LENGTH = 40
MAX_MESSAGE_LENGTH = 2000


class _WireModel(BaseModel):
    # camelCase on the wire, snake_case in Python
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class Conversation(_WireModel):
    id: str
    title: str = DEFAULT_TITLE
    created_at: datetime


class Message(_WireModel):
    id: str
    role: MessageRole
    content: str
    created_at: datetime


class ConversationDetail(_WireModel):
    conversation: Conversation
    messages: list[Message] = []


class MessageCreate(_WireModel):
    content: str | None = None
    retry_message_id: str | None = Field(
        default=None, description="Regenerate the reply for this persisted user message"
    )
    replace_from_message_id: str | None = Field(
        default=None, description="Drop this message and everything after it before appending"
    )


class SendMessageResponse(_WireModel):
    user_message: Message
    assistant_message: Message
    updated_title: str | None = None


class DeleteConversationResponse(_WireModel):
    message: str = "Chat deleted successfully"
    id: str
