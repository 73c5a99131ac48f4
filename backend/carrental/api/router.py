"""
Central API router that aggregates all route modules.
"""

from fastapi import APIRouter
from carrental.api.routes import auth, cars, bookings, drivers, admin, payments

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(auth.router)
api_router.include_router(cars.router)
api_router.include_router(bookings.router)
api_router.include_router(drivers.router)
api_router.include_router(admin.router)
api_router.include_router(payments.router)
