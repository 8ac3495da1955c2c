"""Central router that includes all sub-routers."""

from fastapi import APIRouter

from servicehub.api.auth import router as auth_router
from servicehub.api.service_requests import router as service_requests_router
from servicehub.api.provider import router as provider_router
from servicehub.api.webhooks import router as webhooks_router
from servicehub.api.scheduled_tasks import router as scheduled_tasks_router

api_router = APIRouter()
api_router.include_router(auth_router)
api_router.include_router(service_requests_router)
api_router.include_router(provider_router)
api_router.include_router(webhooks_router)
api_router.include_router(scheduled_tasks_router)
