"""Timeout, retry and error classification for calls to the store service.

Every failure is normalized into a :class:`ChatError` whose ``code`` is one
of ``TIMEOUT``, ``OFFLINE``, ``NETWORK_ERROR``, ``HTTP_ERROR`` or the code
from a JSON ``{"error", "code"}`` body sent by the server. Transport-level
failures and HTTP 429/5xx are retried with exponential backoff; any other
4xx is raised on the first attempt.
"""

import asyncio
import socket
from collections.abc import Awaitable, Callable

import httpx
import structlog

from chatbot.core.exceptions import ChatError, ErrorCode

logger = structlog.get_logger()

DEFAULT_TIMEOUT = 30.0
DEFAULT_MAX_RETRIES = 3
INITIAL_RETRY_DELAY = 1.0

RETRYABLE_CODES = frozenset({
    ErrorCode.TIMEOUT.value,
    ErrorCode.NETWORK_ERROR.value,
    ErrorCode.OFFLINE.value,
})

TIMEOUT_MESSAGE = "Request timed out. Please check your connection and try again."
OFFLINE_MESSAGE = "No internet connection. Please check your network."
NETWORK_MESSAGE = "Unable to connect to the server. Please try again later."
INVALID_RESPONSE_MESSAGE = "Unexpected response from the server."

Operation = Callable[[], Awaitable[httpx.Response]]


def has_network_route(probe_address: str = "8.8.8.8") -> bool:
    """Report whether the host has any route off the machine.

    Connecting a UDP socket consults the routing table without sending a
    packet.
    """
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
            sock.connect((probe_address, 80))
        return True
    except OSError:
        return False


def classify_response(response: httpx.Response) -> ChatError:
    """Turn a non-2xx response into a ChatError."""
    try:
        body = response.json()
    except ValueError:
        body = None

    if isinstance(body, dict) and isinstance(body.get("error"), str):
        details = {k: v for k, v in body.items() if k not in ("error", "code")}
        return ChatError(
            code=body.get("code") or ErrorCode.UNKNOWN_ERROR,
            message=body["error"],
            status=response.status_code,
            details=details,
        )

    return ChatError(
        code=ErrorCode.HTTP_ERROR,
        message=f"Request failed with status {response.status_code}",
        status=response.status_code,
    )


def is_retryable(error: ChatError) -> bool:
    status = error.status
    if status is not None and 400 <= status < 500 and status != 429:
        return False
    if error.code in RETRYABLE_CODES:
        return True
    return status is not None and (status == 429 or status >= 500)


class ResilientRequestClient:
    """Runs request operations with a per-attempt timeout and backoff retries.

    ``operation`` is a zero-argument coroutine factory so each attempt issues
    a fresh request. The client holds no state between calls.
    """

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
        initial_delay: float = INITIAL_RETRY_DELAY,
        online_probe: Callable[[], bool] = has_network_route,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.timeout = timeout
        self.max_retries = max_retries
        self.initial_delay = initial_delay
        self._online_probe = online_probe
        self._sleep = sleep

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retrying after the 0-indexed failed ``attempt``."""
        return self.initial_delay * (2 ** attempt)

    async def attempt(self, operation: Operation, timeout: float | None = None) -> httpx.Response:
        """Run a single attempt, raising a classified ChatError on failure."""
        limit = self.timeout if timeout is None else timeout
        try:
            response = await asyncio.wait_for(operation(), limit)
        except (asyncio.TimeoutError, httpx.TimeoutException):
            raise ChatError(ErrorCode.TIMEOUT, TIMEOUT_MESSAGE, status=None)
        except httpx.TransportError as e:
            if not self._online_probe():
                raise ChatError(ErrorCode.OFFLINE, OFFLINE_MESSAGE, status=None)
            logger.debug("request_transport_error", error=str(e))
            raise ChatError(ErrorCode.NETWORK_ERROR, NETWORK_MESSAGE, status=None)
        except httpx.RequestError as e:
            # Decoding failures and redirect loops
            logger.debug("request_failed", error=str(e))
            raise ChatError(ErrorCode.HTTP_ERROR, INVALID_RESPONSE_MESSAGE, status=None)

        if response.is_success:
            return response
        raise classify_response(response)

    async def execute(
        self,
        operation: Operation,
        timeout: float | None = None,
        max_retries: int | None = None,
    ) -> httpx.Response:
        """Run ``operation`` until it succeeds or retries are exhausted.

        Raises the last classified ChatError.
        """
        retries = max(0, self.max_retries if max_retries is None else max_retries)

        for attempt in range(retries + 1):
            try:
                return await self.attempt(operation, timeout)
            except ChatError as error:
                if not is_retryable(error) or attempt == retries:
                    raise

                delay = self.backoff_delay(attempt)
                logger.info(
                    "request_retry",
                    attempt=attempt + 1,
                    attempts=retries + 1,
                    delay_s=delay,
                    code=error.code,
                    status=error.status,
                )
                await self._sleep(delay)
