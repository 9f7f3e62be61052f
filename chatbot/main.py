from contextlib import asynccontextmanager

import httpx
import structlog
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from chatbot import __version__
from chatbot.api.v1.router import v1_router
from chatbot.config import settings
from chatbot.core.database import close_db, init_db
from chatbot.core.exceptions import ChatError, chat_error_handler, validation_error_handler
from chatbot.core.logging import configure_logging
from chatbot.core.middleware import RequestLoggingMiddleware
from chatbot.services.completion.openai_client import build_completion_provider

configure_logging(settings.chat_log_level)

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown."""
    await init_db()

    http_client = httpx.AsyncClient(timeout=httpx.Timeout(settings.ai_timeout, connect=5.0))
    provider = build_completion_provider(settings, http_client=http_client)
    app.state.completion_provider = provider

    logger.info(
        "chat_backend_starting",
        db_url=settings.chat_db_url,
        provider=provider.name,
        model=settings.ai_model,
    )
    yield

    await provider.close()
    await http_client.aclose()
    await close_db()
    logger.info("chat_backend_stopping")


app = FastAPI(
    title="Chatbot Backend",
    description="Conversation store and assistant replies for the chat client",
    version=__version__,
    lifespan=lifespan,
)

app.add_exception_handler(ChatError, chat_error_handler)
app.add_exception_handler(RequestValidationError, validation_error_handler)

# Starlette: last-added = outermost
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.chat_cors_origins.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestLoggingMiddleware)

app.include_router(v1_router)
