from fastapi import APIRouter

from chat_notifier.api.routes import health, messages, policy

api_router = APIRouter()
api_router.include_router(health.router, tags=["health"])
api_router.include_router(messages.router, prefix="/chat/messages", tags=["chat"])
api_router.include_router(policy.router, prefix="/admin/notification-policy", tags=["admin"])
