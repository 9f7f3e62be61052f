from fastapi import Request

from chatbot.services.completion.base import CompletionProvider


def get_completion_provider(request: Request) -> CompletionProvider:
    """Return the completion provider stored on app state during lifespan."""
    return request.app.state.completion_provider
