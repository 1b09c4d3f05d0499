from fastapi import APIRouter

from app.api.v1.routers import (
    admin_applications,
    applicants,
    application_form,
    health,
    reminders,
)

api_router = APIRouter()
api_router.include_router(health.router)
api_router.include_router(applicants.router)
api_router.include_router(application_form.router)
api_router.include_router(admin_applications.router)
api_router.include_router(reminders.router)

__all__ = ["api_router"]
