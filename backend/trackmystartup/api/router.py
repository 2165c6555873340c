from fastapi import APIRouter

from trackmystartup.api.routes import (
    applications,
    health,
    invitations,
    messages,
    offers,
    realtime,
    recognition,
)

api_router = APIRouter()
api_router.include_router(health.router)
api_router.include_router(applications.router)
api_router.include_router(messages.router)
api_router.include_router(offers.router)
api_router.include_router(recognition.router)
api_router.include_router(invitations.router)
api_router.include_router(realtime.router)
