from fastapi import APIRouter

from chatbot.api.v1.conversations import router as conversations_router
from chatbot.api.v1.health import router as health_router

v1_router = APIRouter()

v1_router.include_router(health_router, tags=["Health"])
v1_router.include_router(conversations_router, tags=["Conversations"])
