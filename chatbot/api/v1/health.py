import time

from fastapi import APIRouter, Depends

from chatbot.dependencies import get_completion_provider
from chatbot.schemas.health import HealthResponse
from chatbot.services.completion.base import CompletionProvider

router = APIRouter()

_start_time = time.monotonic()


@router.get("/health")
async def health_check(
    provider: CompletionProvider = Depends(get_completion_provider),
) -> HealthResponse:
    """Reachability probe used by clients at startup."""
    return HealthResponse(
        status="ok",
        provider=provider.name,
        uptime_seconds=round(time.monotonic() - _start_time, 1),
    )
