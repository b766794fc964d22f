"""
API routers mounted under ``/api``.
"""

from fastapi import APIRouter

from .endpoints import accounts, cache_admin, clients, health, movements, products, user

api_router = APIRouter(prefix="/api")
api_router.include_router(health.router)
api_router.include_router(products.router)
api_router.include_router(clients.router)
api_router.include_router(accounts.router)
api_router.include_router(movements.router)
api_router.include_router(user.router)
api_router.include_router(cache_admin.router)

__all__ = ["api_router"]
