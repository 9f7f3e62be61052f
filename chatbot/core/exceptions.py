from enum import Enum

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from chatbot.schemas.conversations import Message


class ErrorCode(str, Enum):
    """Symbolic error codes shared by the store service and the client."""

    TIMEOUT = "TIMEOUT"
    OFFLINE = "OFFLINE"
    NETWORK_ERROR = "NETWORK_ERROR"
    HTTP_ERROR = "HTTP_ERROR"
    NOT_FOUND = "NOT_FOUND"
    INVALID_INPUT = "INVALID_INPUT"
    AI_ERROR = "AI_ERROR"
    AI_PROVIDER_ERROR = "AI_PROVIDER_ERROR"
    RATE_LIMIT = "RATE_LIMIT"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class ChatError(Exception):
    """Base exception for classified chat errors.

    ``code`` is usually an :class:`ErrorCode` value, but codes parsed from a
    provider's error body are kept verbatim.
    """

    def __init__(
        self,
        code: str,
        message: str,
        status: int | None = 500,
        details: dict | None = None,
    ):
        self.code = code.value if isinstance(code, ErrorCode) else code
        self.message = message
        self.status = status
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        result = {"error": self.message, "code": self.code}
        if self.details:
            result.update(self.details)
        return result


class NotFoundError(ChatError):
    def __init__(self, message: str = "Chat not found", details: dict | None = None):
        super().__init__(code=ErrorCode.NOT_FOUND, message=message, status=404, details=details)


class InvalidInputError(ChatError):
    def __init__(self, message: str = "Invalid input", details: dict | None = None):
        super().__init__(code=ErrorCode.INVALID_INPUT, message=message, status=400, details=details)


class CompletionError(ChatError):
    """The upstream completion provider failed to produce a reply."""

    def __init__(
        self,
        message: str = "Unable to generate response. Please try again.",
        code: str = ErrorCode.AI_ERROR,
        details: dict | None = None,
    ):
        super().__init__(code=code, message=message, status=503, details=details)


class ReplyFailedError(ChatError):
    """The user message was persisted but no assistant reply was produced."""

    def __init__(
        self,
        message: str,
        user_message: Message,
        code: str = ErrorCode.AI_ERROR,
        updated_title: str | None = None,
        status: int | None = 503,
    ):
        self.user_message = user_message
        self.updated_title = updated_title
        details = {"userMessage": user_message.model_dump(mode="json", by_alias=True)}
        if updated_title is not None:
            details["updatedTitle"] = updated_title
        super().__init__(code=code, message=message, status=status, details=details)


async def chat_error_handler(request: Request, exc: ChatError) -> JSONResponse:
    """Global exception handler for ChatError and subclasses."""
    return JSONResponse(status_code=exc.status or 500, content=exc.to_dict())


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Render request-body validation failures in the flat error shape."""
    error = InvalidInputError("Invalid request body")
    return JSONResponse(status_code=error.status, content=error.to_dict())
