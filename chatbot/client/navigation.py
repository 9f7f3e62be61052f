import structlog

from chatbot.client.router import Router
from chatbot.client.state import ConversationStateMachine, Generation
from chatbot.core.exceptions import ChatError

logger = structlog.get_logger()


class NavigationSynchronizer:
    """Reconciles route changes (user selection, back/forward) with the state machine.

    Each selection change takes a generation token; a message fetch only
    lands if no newer selection change happened while it was in flight.
    Leaving a conversation that never received a message deletes it.
    """

    def __init__(self, state: ConversationStateMachine, router: Router | None = None):
        self._state = state
        self._router = router or state.router
        self._generation = Generation()
        self._router.subscribe(self.on_route_change)

    async def on_route_change(self, conversation_id: str | None) -> None:
        if conversation_id != self._router.current_id:
            logger.debug("route_change_superseded", chat_id=conversation_id)
            return

        state = self._state
        if state.conversations_loading:
            # initialize() restores the route itself
            logger.debug("route_change_deferred", chat_id=conversation_id)
            return

        if state.selected is not None and state.selected.id == conversation_id:
            return

        conversation = None
        if conversation_id is not None:
            conversation = state.find_conversation(conversation_id)
            if conversation is None:
                logger.info("route_conversation_not_found", chat_id=conversation_id)
                self._generation.advance()
                self._router.replace(None)
                return

        token = self._generation.advance()
        leaving = state.selected
        if leaving is not None:
            await state.discard_if_empty(leaving)
            if not self._generation.is_current(token):
                return

        if conversation is None:
            if state.selected is not None:
                state.clear_selection()
            return

        state.show_conversation(conversation)
        try:
            detail = await state.store.get_conversation_detail(conversation.id)
        except ChatError as exc:
            if self._generation.is_current(token):
                logger.warning("message_load_failed", chat_id=conversation.id, code=exc.code)
                state.report_error("Failed to load messages")
            return

        if not self._generation.is_current(token):
            logger.info("stale_messages_discarded", chat_id=conversation.id)
            return
        state.apply_loaded_messages(conversation.id, detail.messages)

    def close(self) -> None:
        """Discard any message fetch still in flight."""
        self._generation.advance()
