"""Message content normalization shared by the store service and the client."""

from chatbot.core.exceptions import InvalidInputError
from chatbot.schemas.conversations import MAX_MESSAGE_LENGTH, TITLE_MAX_LENGTH

_ESCAPES = str.maketrans({
    "&": "&amp;",
    '"': "&quot;",
    "'": "&#x27;",
    "<": "&lt;",
    ">": "&gt;",
    "/": "&#x2F;",
    "\\": "&#x5C;",
    "`": "&#96;",
})


def normalize_content(content: str | None) -> str:
    """Trim and HTML-escape message content, enforcing the stored limits.

    Raises InvalidInputError for blank content or content longer than
    MAX_MESSAGE_LENGTH once escaped.
    """
    if not isinstance(content, str) or not content.strip():
        raise InvalidInputError("Message cannot be empty")

    normalized = content.strip().translate(_ESCAPES)
    if len(normalized) > MAX_MESSAGE_LENGTH:
        raise InvalidInputError("Message too long")
    return normalized


def title_from_content(normalized: str) -> str:
    return normalized[:TITLE_MAX_LENGTH]
