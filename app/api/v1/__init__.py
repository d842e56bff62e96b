from fastapi import APIRouter

from app.api.v1.routers import borrowers, health, loan_applications, loans, settings

api_router = APIRouter()
api_router.include_router(health.router)
api_router.include_router(borrowers.router)
api_router.include_router(loan_applications.router)
api_router.include_router(loans.router)
api_router.include_router(settings.router)

__all__ = ["api_router"]
