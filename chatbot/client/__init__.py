from chatbot.client.navigation import NavigationSynchronizer
from chatbot.client.resilient import ResilientRequestClient
from chatbot.client.router import Router
from chatbot.client.state import BackendStatus, ChatSnapshot, ConversationStateMachine
from chatbot.client.store import ConversationStore, HttpConversationStore

__all__ = [
    "BackendStatus",
    "ChatSnapshot",
    "ConversationStateMachine",
    "ConversationStore",
    "HttpConversationStore",
    "NavigationSynchronizer",
    "ResilientRequestClient",
    "Router",
]
