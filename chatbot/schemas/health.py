from pydantic import BaseModel

from chatbot import __version__


class HealthResponse(BaseModel):
    status: str  # "ok"
    provider: str  # "openai" or "mock"
    uptime_seconds: float = 0.0
    version: str = __version__
