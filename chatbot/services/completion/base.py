from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class ChatTurn:
    role: str
    content: str


class CompletionProvider(ABC):
    name: str = "unknown"

    @abstractmethod
    async def generate_reply(self, conversation: list[ChatTurn]) -> str:
        """Return the assistant reply for the conversation so far.

        Raises CompletionError when the provider cannot produce a reply.
        """
        ...

    async def close(self) -> None:
        """Release any underlying resources."""
