import uuid
from datetime import datetime, timezone

import structlog
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

import chatbot.core.database as db_module
from chatbot.core.database import Chat, ChatMessage
from chatbot.core.exceptions import CompletionError, InvalidInputError, NotFoundError, ReplyFailedError
from chatbot.core.text import normalize_content, title_from_content
from chatbot.schemas.conversations import (
    DEFAULT_TITLE,
    Conversation,
    ConversationDetail,
    Message,
    MessageCreate,
    MessageRole,
    SendMessageResponse,
)
from chatbot.services.completion.base import ChatTurn, CompletionProvider

logger = structlog.get_logger()

FALLBACK_REPLY = "Sorry, I'm having trouble responding right now. Please try again."


def _utc(dt: datetime) -> datetime:
    # SQLite hands timestamps back without tzinfo
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def _chat_to_response(chat: Chat) -> Conversation:
    return Conversation(id=chat.id, title=chat.title, created_at=_utc(chat.created_at))


def _message_to_response(msg: ChatMessage) -> Message:
    return Message(
        id=msg.id,
        role=MessageRole(msg.role),
        content=msg.content,
        created_at=_utc(msg.created_at),
    )


class ConversationService:
    def __init__(self, session_factory: async_sessionmaker | None = None):
        self._session_factory_override = session_factory

    @property
    def _session_factory(self) -> async_sessionmaker:
        return self._session_factory_override or db_module.async_session

    async def list_conversations(self) -> list[Conversation]:
        async with self._session_factory() as session:
            result = await session.execute(select(Chat).order_by(Chat.created_at.desc()))
            return [_chat_to_response(chat) for chat in result.scalars().all()]

    async def create_conversation(self) -> Conversation:
        chat = Chat(
            id=str(uuid.uuid4()),
            title=DEFAULT_TITLE,
            title_generated=False,
            created_at=datetime.now(timezone.utc),
        )
        async with self._session_factory() as session:
            session.add(chat)
            await session.commit()

        logger.info("conversation_created", chat_id=chat.id)
        return _chat_to_response(chat)

    async def get_conversation(self, conversation_id: str) -> ConversationDetail:
        async with self._session_factory() as session:
            chat = await self._get_chat(session, conversation_id)
            messages = await self._list_messages(session, conversation_id)
            return ConversationDetail(
                conversation=_chat_to_response(chat),
                messages=[_message_to_response(m) for m in messages],
            )

    async def delete_conversation(self, conversation_id: str) -> None:
        async with self._session_factory() as session:
            await self._get_chat(session, conversation_id)

            # Delete messages first (CASCADE is not enforced by SQLite by default)
            await session.execute(delete(ChatMessage).where(ChatMessage.chat_id == conversation_id))
            await session.execute(delete(Chat).where(Chat.id == conversation_id))
            await session.commit()

        logger.info("conversation_deleted", chat_id=conversation_id)

    async def append_message(
        self,
        conversation_id: str,
        data: MessageCreate,
        provider: CompletionProvider,
    ) -> SendMessageResponse:
        """Persist a user message, then ask the provider for the reply.

        The user message (and the one-time title) are committed before the
        provider is called, so a provider failure leaves the user message
        stored and is reported as ReplyFailedError.
        """
        if data.retry_message_id and data.replace_from_message_id:
            raise InvalidInputError("retryMessageId and replaceFromMessageId cannot be combined")

        content = None
        if not data.retry_message_id:
            content = normalize_content(data.content)

        async with self._session_factory() as session:
            chat = await self._get_chat(session, conversation_id)

            if data.retry_message_id:
                user_msg = await self._get_message(session, conversation_id, data.retry_message_id)
                if user_msg is None or user_msg.role != MessageRole.USER.value:
                    raise InvalidInputError("Message cannot be retried")
                # Anything after the retried message belongs to a superseded attempt
                await session.execute(
                    delete(ChatMessage).where(
                        ChatMessage.chat_id == conversation_id,
                        ChatMessage.created_at > user_msg.created_at,
                    )
                )
            else:
                if data.replace_from_message_id:
                    anchor = await self._get_message(session, conversation_id, data.replace_from_message_id)
                    if anchor is None:
                        raise NotFoundError("Message not found")
                    await session.execute(
                        delete(ChatMessage).where(
                            ChatMessage.chat_id == conversation_id,
                            ChatMessage.created_at >= anchor.created_at,
                        )
                    )

                user_msg = ChatMessage(
                    id=str(uuid.uuid4()),
                    chat_id=conversation_id,
                    role=MessageRole.USER.value,
                    content=content,
                    created_at=datetime.now(timezone.utc),
                )
                session.add(user_msg)

                if not chat.title_generated:
                    chat.title = title_from_content(content)
                    chat.title_generated = True

            updated_title = chat.title
            await session.commit()

            history = await self._list_messages(session, conversation_id)

        turns = [ChatTurn(role=m.role, content=m.content) for m in history]
        user_response = _message_to_response(user_msg)

        try:
            reply = await provider.generate_reply(turns)
        except CompletionError as exc:
            logger.warning(
                "reply_generation_failed",
                chat_id=conversation_id,
                message_id=user_msg.id,
                code=exc.code,
            )
            raise ReplyFailedError(
                exc.message,
                user_message=user_response,
                code=exc.code,
                updated_title=updated_title,
            )

        assistant_msg = ChatMessage(
            id=str(uuid.uuid4()),
            chat_id=conversation_id,
            role=MessageRole.ASSISTANT.value,
            content=reply or FALLBACK_REPLY,
            created_at=datetime.now(timezone.utc),
        )
        async with self._session_factory() as session:
            session.add(assistant_msg)
            await session.commit()

        return SendMessageResponse(
            user_message=user_response,
            assistant_message=_message_to_response(assistant_msg),
            updated_title=updated_title,
        )

    async def _get_chat(self, session: AsyncSession, conversation_id: str) -> Chat:
        chat = await session.get(Chat, conversation_id)
        if chat is None:
            raise NotFoundError()
        return chat

    async def _get_message(
        self, session: AsyncSession, conversation_id: str, message_id: str
    ) -> ChatMessage | None:
        result = await session.execute(
            select(ChatMessage).where(
                ChatMessage.chat_id == conversation_id,
                ChatMessage.id == message_id,
            )
        )
        return result.scalar_one_or_none()

    async def _list_messages(self, session: AsyncSession, conversation_id: str) -> list[ChatMessage]:
        result = await session.execute(
            select(ChatMessage)
            .where(ChatMessage.chat_id == conversation_id)
            .order_by(ChatMessage.created_at.asc())
        )
        return list(result.scalars().all())
