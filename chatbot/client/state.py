"""Client-side conversation state.

:class:`ConversationStateMachine` is the single owner of the conversation
list, the selected conversation and its message sequence, the in-flight send
flag, the failed-send records and the edit session. All mutation happens
between awaits on one event loop; every continuation that resumes after a
store call re-checks a lifecycle token and the conversation id it captured
before touching state.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

import structlog

from chatbot.client.router import Router
from chatbot.client.store import ConversationStore
from chatbot.core.exceptions import ChatError, ErrorCode, ReplyFailedError
from chatbot.core.text import normalize_content
from chatbot.schemas.conversations import DEFAULT_TITLE, Conversation, Message, MessageRole, SendMessageResponse

logger = structlog.get_logger()

# Server ids are UUID4 strings, so this prefix never collides with them
TEMP_ID_PREFIX = "temp-user-"

GENERIC_ERROR = "Something went wrong"


def new_temp_id() -> str:
    return f"{TEMP_ID_PREFIX}{uuid.uuid4().hex}"


def is_temp_id(message_id: str) -> bool:
    return message_id.startswith(TEMP_ID_PREFIX)


class BackendStatus(str, Enum):
    CHECKING = "checking"
    ONLINE = "online"
    OFFLINE = "offline"


@dataclass(frozen=True)
class FailedSend:
    error_message: str
    error_code: str


class FailedSends:
    """Message id -> last failed send for that message."""

    def __init__(self):
        self._records: dict[str, FailedSend] = {}

    def record(self, message_id: str, error_message: str, error_code: str) -> None:
        self._records[message_id] = FailedSend(error_message, error_code)

    def clear(self, message_id: str) -> None:
        self._records.pop(message_id, None)

    def get(self, message_id: str) -> FailedSend | None:
        return self._records.get(message_id)

    def retain(self, message_ids: set[str]) -> None:
        """Drop records for messages no longer in the sequence."""
        self._records = {k: v for k, v in self._records.items() if k in message_ids}

    def reset(self) -> None:
        self._records = {}

    def as_dict(self) -> dict[str, FailedSend]:
        return dict(self._records)

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._records

    def __len__(self) -> int:
        return len(self._records)


@dataclass(frozen=True)
class EditSession:
    message_id: str
    original_content: str


class Generation:
    """Monotonic token source; a result is applied only while its token is current."""

    def __init__(self):
        self._value = 0

    @property
    def current(self) -> int:
        return self._value

    def advance(self) -> int:
        self._value += 1
        return self._value

    def is_current(self, token: int) -> bool:
        return token == self._value


@dataclass(frozen=True)
class ChatSnapshot:
    conversations: tuple[Conversation, ...]
    conversations_loading: bool
    selected: Conversation | None
    messages: tuple[Message, ...]
    loading: bool
    error: str | None
    backend_status: BackendStatus
    failed: dict[str, FailedSend]
    edit_session: EditSession | None

    def is_failed(self, message_id: str) -> bool:
        return message_id in self.failed


class ConversationStateMachine:
    def __init__(self, store: ConversationStore, router: Router):
        self.store = store
        self.router = router
        self._conversations: list[Conversation] = []
        # True until initialize() finishes; route changes are ignored meanwhile
        self._conversations_loading = True
        self._selected: Conversation | None = None
        self._messages: list[Message] = []
        self._messages_loaded = False
        self._loading = False
        self._error: str | None = None
        self._backend_status = BackendStatus.CHECKING
        self._failed = FailedSends()
        self._edit_session: EditSession | None = None
        self._lifecycle = Generation()

    # ── Read side ────────────────────────────────────────────────────────────

    @property
    def conversations(self) -> tuple[Conversation, ...]:
        return tuple(self._conversations)

    @property
    def conversations_loading(self) -> bool:
        return self._conversations_loading

    @property
    def selected(self) -> Conversation | None:
        return self._selected

    @property
    def messages(self) -> tuple[Message, ...]:
        return tuple(self._messages)

    @property
    def loading(self) -> bool:
        return self._loading

    @property
    def error(self) -> str | None:
        return self._error

    @property
    def backend_status(self) -> BackendStatus:
        return self._backend_status

    @property
    def failed(self) -> dict[str, FailedSend]:
        return self._failed.as_dict()

    @property
    def edit_session(self) -> EditSession | None:
        return self._edit_session

    def snapshot(self) -> ChatSnapshot:
        return ChatSnapshot(
            conversations=self.conversations,
            conversations_loading=self._conversations_loading,
            selected=self._selected,
            messages=self.messages,
            loading=self._loading,
            error=self._error,
            backend_status=self._backend_status,
            failed=self._failed.as_dict(),
            edit_session=self._edit_session,
        )

    def find_conversation(self, conversation_id: str) -> Conversation | None:
        return next((c for c in self._conversations if c.id == conversation_id), None)

    def find_message(self, message_id: str) -> Message | None:
        return next((m for m in self._messages if m.id == message_id), None)

    # ── Commands ─────────────────────────────────────────────────────────────

    async def initialize(self, conversation_id: str | None = None) -> None:
        """Probe the backend, load the list and restore a deep-linked conversation.

        Defaults to the router's current conversation id.
        """
        if conversation_id is None:
            conversation_id = self.router.current_id
        token = self._lifecycle.current
        self._conversations_loading = True

        try:
            try:
                await self.store.check_reachability()
            except ChatError as exc:
                if self._lifecycle.is_current(token):
                    logger.warning("backend_unreachable", code=exc.code)
                    self._backend_status = BackendStatus.OFFLINE
                    self._error = exc.message or "Failed to connect to backend server"
                return
            if not self._lifecycle.is_current(token):
                return
            self._backend_status = BackendStatus.ONLINE

            try:
                conversations = await self.store.list_conversations()
            except ChatError as exc:
                if self._lifecycle.is_current(token):
                    logger.warning("conversation_list_failed", code=exc.code)
                    self._error = "Failed to load conversations"
                return
            if not self._lifecycle.is_current(token):
                return
            self._conversations = list(conversations)

            if conversation_id is None:
                self.clear_selection()
                return

            conversation = self.find_conversation(conversation_id)
            if conversation is None:
                logger.info("conversation_not_found", chat_id=conversation_id)
                self.router.replace(None)
                return

            self.show_conversation(conversation)
            try:
                detail = await self.store.get_conversation_detail(conversation.id)
            except ChatError as exc:
                if self._is_relevant(token, conversation.id):
                    logger.warning("message_load_failed", chat_id=conversation.id, code=exc.code)
                    self._error = "Failed to load messages"
                return
            if self._is_relevant(token, conversation.id):
                self.apply_loaded_messages(conversation.id, detail.messages)
        finally:
            if self._lifecycle.is_current(token):
                self._conversations_loading = False

    async def start_new_conversation(self) -> Conversation | None:
        self._error = None
        token = self._lifecycle.current

        if self._selected is not None:
            await self.discard_if_empty(self._selected)

        try:
            conversation = await self.store.create_conversation()
        except ChatError as exc:
            if self._lifecycle.is_current(token):
                logger.warning("conversation_create_failed", code=exc.code)
                self._error = "Failed to create chat"
                if self._selected is not None and self.find_conversation(self._selected.id) is None:
                    # The abandoned conversation was discarded above
                    self.clear_selection()
                    self.router.navigate(None)
            return None
        if not self._lifecycle.is_current(token):
            return None

        self._conversations = [conversation, *self._conversations]
        self._selected = conversation
        self._messages = []
        self._messages_loaded = True
        self._failed.reset()
        self._edit_session = None
        self.router.navigate(conversation.id)
        return conversation

    async def select_conversation(self, conversation_id: str) -> None:
        """Navigate to another conversation.

        The NavigationSynchronizer discards the conversation being left if it
        is empty and loads the new one, the same path browser back/forward
        takes.
        """
        self.router.navigate(conversation_id)

    async def send_message(self, content: str, retry_message_id: str | None = None) -> bool:
        """Send ``content``, or resend the failed message ``retry_message_id``.

        Returns True once the user message and the assistant reply are
        persisted. On failure the message stays visible and is recorded in
        ``failed``.
        """
        conversation = self._selected
        if conversation is None:
            return False
        if self._loading:
            logger.info("send_ignored", chat_id=conversation.id, reason="send in flight")
            return False

        # Persisted messages were normalized by the server already
        stored_retry = retry_message_id is not None and not is_temp_id(retry_message_id)
        if not stored_retry:
            try:
                normalize_content(content)
            except ChatError as exc:
                self._error = exc.message
                return False

        self._error = None
        if retry_message_id is None:
            target_id = new_temp_id()
            self._messages.append(Message(
                id=target_id,
                role=MessageRole.USER,
                content=content,
                created_at=datetime.now(timezone.utc),
            ))
        else:
            target_id = retry_message_id

        self._loading = True
        token = self._lifecycle.current
        try:
            result = await self.store.append_message(
                conversation.id,
                content,
                retry_message_id=retry_message_id if stored_retry else None,
            )
        except ChatError as exc:
            if self._is_relevant(token, conversation.id):
                self._record_send_failure(conversation.id, target_id, exc)
            else:
                logger.info("send_result_discarded", chat_id=conversation.id, code=exc.code)
            return False
        else:
            if not self._is_relevant(token, conversation.id):
                logger.info("send_result_discarded", chat_id=conversation.id)
                if self._lifecycle.is_current(token):
                    self._apply_title(conversation.id, result.updated_title)
                return True

            if retry_message_id is None:
                kept = [m for m in self._messages if m.id != target_id]
            else:
                index = self._index_of(retry_message_id)
                kept = self._messages if index is None else self._messages[:index]
            self._messages = self._with_reply(kept, result)
            self._failed.clear(target_id)
            self._prune_failed()
            self._apply_title(conversation.id, result.updated_title)
            return True
        finally:
            self._loading = False

    async def retry_message(self, message_id: str) -> bool:
        message = self.find_message(message_id)
        if message is None or message.role != MessageRole.USER:
            return False
        return await self.send_message(message.content, retry_message_id=message_id)

    def start_editing(self, message: Message) -> bool:
        """Enter edit mode for a user message; failed messages are retried, not edited."""
        if message.role != MessageRole.USER or message.id in self._failed:
            return False
        self._edit_session = EditSession(message_id=message.id, original_content=message.content)
        return True

    def cancel_editing(self) -> None:
        self._edit_session = None

    async def submit_edit(self, message_id: str, new_content: str) -> bool:
        """Replace a message and everything after it with a fresh send.

        Failures surface through ``error`` only; an edit is not retryable in
        place.
        """
        conversation = self._selected
        if conversation is None or self._loading:
            return False
        index = self._index_of(message_id)
        if index is None:
            return False
        try:
            normalize_content(new_content)
        except ChatError as exc:
            self._error = exc.message
            return False

        self._error = None
        self._edit_session = None
        self._messages = self._messages[:index]
        self._prune_failed()

        self._loading = True
        token = self._lifecycle.current
        try:
            result = await self.store.append_message(
                conversation.id,
                new_content,
                replace_from_message_id=None if is_temp_id(message_id) else message_id,
            )
        except ChatError as exc:
            if self._is_relevant(token, conversation.id):
                logger.warning("edit_failed", chat_id=conversation.id, code=exc.code)
                if isinstance(exc, ReplyFailedError):
                    # The new wording was stored; keep it on screen
                    self._messages.append(exc.user_message)
                    self._apply_title(conversation.id, exc.updated_title)
                self._error = exc.message or GENERIC_ERROR
            return False
        else:
            if self._is_relevant(token, conversation.id):
                self._messages = self._with_reply(self._messages, result)
                self._apply_title(conversation.id, result.updated_title)
            return True
        finally:
            self._loading = False

    async def delete_conversation(self, conversation_id: str) -> bool:
        self._error = None
        token = self._lifecycle.current
        try:
            await self.store.delete_conversation(conversation_id)
        except ChatError as exc:
            if self._lifecycle.is_current(token):
                logger.warning("conversation_delete_failed", chat_id=conversation_id, code=exc.code)
                self._error = "Failed to delete chat"
            return False
        if not self._lifecycle.is_current(token):
            return True

        self._conversations = [c for c in self._conversations if c.id != conversation_id]
        if self._selected is not None and self._selected.id == conversation_id:
            self.clear_selection()
            self._failed.reset()
            self.router.navigate(None)
        return True

    def close(self) -> None:
        """Tear down; results of calls still in flight are discarded."""
        self._lifecycle.advance()

    # ── Hooks for the NavigationSynchronizer ─────────────────────────────────

    def show_conversation(self, conversation: Conversation) -> None:
        """Select ``conversation`` with an empty, not-yet-loaded sequence."""
        self._selected = conversation
        self._messages = []
        self._messages_loaded = False
        self._edit_session = None
        self._prune_failed()

    def apply_loaded_messages(self, conversation_id: str, messages: list[Message]) -> bool:
        if self._selected is None or self._selected.id != conversation_id:
            return False
        # An optimistic send started while loading stays at the end
        pending = [m for m in self._messages if is_temp_id(m.id)]
        self._messages = [*messages, *pending]
        self._messages_loaded = True
        return True

    def clear_selection(self) -> None:
        self._selected = None
        self._messages = []
        self._messages_loaded = False
        self._edit_session = None

    def report_error(self, message: str) -> None:
        self._error = message

    async def discard_if_empty(self, conversation: Conversation) -> None:
        """Best-effort deletion of an abandoned conversation with no messages.

        When emptiness is uncertain (messages never loaded and the fetch
        fails) the conversation is kept. Errors are logged, never surfaced.
        """
        if conversation.title != DEFAULT_TITLE:
            # Titles are only rewritten by a first message
            return
        is_selected = self._selected is not None and self._selected.id == conversation.id
        if is_selected and self._messages:
            return

        try:
            if not (is_selected and self._messages_loaded):
                detail = await self.store.get_conversation_detail(conversation.id)
                if detail.messages:
                    return
            await self.store.delete_conversation(conversation.id)
        except ChatError as exc:
            logger.debug("empty_conversation_cleanup_failed", chat_id=conversation.id, code=exc.code)
            return

        self._conversations = [c for c in self._conversations if c.id != conversation.id]
        logger.info("empty_conversation_discarded", chat_id=conversation.id)

    # ── Internals ────────────────────────────────────────────────────────────

    def _is_relevant(self, token: int, conversation_id: str) -> bool:
        return (
            self._lifecycle.is_current(token)
            and self._selected is not None
            and self._selected.id == conversation_id
        )

    def _index_of(self, message_id: str) -> int | None:
        return next((i for i, m in enumerate(self._messages) if m.id == message_id), None)

    def _with_reply(self, messages: list[Message], result: SendMessageResponse) -> list[Message]:
        # A load that landed mid-send may already hold the stored user message
        returned = {result.user_message.id, result.assistant_message.id}
        kept = [m for m in messages if m.id not in returned]
        return [*kept, result.user_message, result.assistant_message]

    def _prune_failed(self) -> None:
        self._failed.retain({m.id for m in self._messages})

    def _record_send_failure(self, conversation_id: str, target_id: str, exc: ChatError) -> None:
        error_message = exc.message or GENERIC_ERROR
        error_code = exc.code or ErrorCode.UNKNOWN_ERROR.value
        failed_id = target_id

        if isinstance(exc, ReplyFailedError):
            # The user message is stored server-side; show the stored copy
            persisted = exc.user_message
            index = self._index_of(target_id)
            if index is None:
                self._messages.append(persisted)
            else:
                self._messages[index] = persisted
            self._failed.clear(target_id)
            failed_id = persisted.id
            self._apply_title(conversation_id, exc.updated_title)

        self._failed.record(failed_id, error_message, error_code)
        self._error = error_message
        logger.warning(
            "send_failed",
            chat_id=conversation_id,
            message_id=failed_id,
            code=error_code,
        )

    def _apply_title(self, conversation_id: str, title: str | None) -> None:
        if not title:
            return
        if self._selected is not None and self._selected.id == conversation_id and self._selected.title != title:
            self._selected = self._selected.model_copy(update={"title": title})
        self._conversations = [
            c.model_copy(update={"title": title}) if c.id == conversation_id and c.title != title else c
            for c in self._conversations
        ]
