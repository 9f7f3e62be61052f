import asyncio
from collections.abc import Awaitable, Callable

ROUTE_PREFIX = "/chat/"

RouteListener = Callable[[str | None], Awaitable[None]]


class Router:
    """In-memory navigation history keyed by conversation id.

    ``None`` is the empty route (``/``). Listeners run as event-loop tasks
    after the current entry changes, the way a browser fires route effects
    once the URL has changed, so navigation must happen inside a running
    loop. ``settle()`` awaits everything scheduled so far.
    """

    def __init__(self, conversation_id: str | None = None):
        self._history: list[str | None] = [conversation_id]
        self._index = 0
        self._listeners: list[RouteListener] = []
        self._pending: set[asyncio.Task] = set()

    @classmethod
    def from_path(cls, path: str) -> "Router":
        return cls(parse_path(path))

    @property
    def current_id(self) -> str | None:
        return self._history[self._index]

    @property
    def path(self) -> str:
        return route_path(self.current_id)

    @property
    def history(self) -> list[str | None]:
        return list(self._history)

    def subscribe(self, listener: RouteListener) -> None:
        self._listeners.append(listener)

    def navigate(self, conversation_id: str | None) -> None:
        """Push a new history entry; navigating to the current route is a no-op."""
        if conversation_id == self.current_id:
            return
        del self._history[self._index + 1:]
        self._history.append(conversation_id)
        self._index += 1
        self._notify()

    def replace(self, conversation_id: str | None) -> None:
        """Replace the current history entry (redirect)."""
        if conversation_id == self.current_id:
            return
        self._history[self._index] = conversation_id
        self._notify()

    def back(self) -> bool:
        if self._index == 0:
            return False
        self._index -= 1
        self._notify()
        return True

    def forward(self) -> bool:
        if self._index >= len(self._history) - 1:
            return False
        self._index += 1
        self._notify()
        return True

    async def settle(self) -> None:
        """Wait until no listener task is outstanding."""
        while self._pending:
            await asyncio.gather(*list(self._pending))

    def _notify(self) -> None:
        loop = asyncio.get_running_loop()
        conversation_id = self.current_id
        for listener in list(self._listeners):
            task = loop.create_task(listener(conversation_id))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)


def route_path(conversation_id: str | None) -> str:
    return f"{ROUTE_PREFIX}{conversation_id}" if conversation_id else "/"


def parse_path(path: str) -> str | None:
    """Conversation id from a ``/chat/<id>`` path; None for any other path."""
    if path.startswith(ROUTE_PREFIX):
        return path[len(ROUTE_PREFIX):].strip("/") or None
    return None
