"""
Car inventory endpoints. Reading is public, changes are admin only.
"""

from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from carrental.db.session import get_db
from carrental.schemas.car import CarCreate, CarResponse, CarListResponse, CarStatusUpdate, CarUpdate
from carrental.services.car_service import (
    create_car,
    delete_car,
    get_car,
    list_cars,
    update_car,
    update_car_status,
)
from carrental.core.security import require_admin

router = APIRouter(prefix="/cars", tags=["Cars"])


@router.post(
    "/",
    response_model=CarResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_admin)],
)
async def create_car_endpoint(car_data: CarCreate, db: AsyncSession = Depends(get_db)):
    car = await create_car(db, car_data)
    return car


@router.get("/", response_model=CarListResponse)
async def list_cars_endpoint(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    car_status: Optional[Literal["available", "unavailable"]] = Query(None, alias="status"),
    db: AsyncSession = Depends(get_db),
):
    cars, total = await list_cars(db, page, page_size, car_status)
    return CarListResponse(
        cars=[CarResponse.model_validate(c) for c in cars],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/{car_id}", response_model=CarResponse)
async def get_car_endpoint(car_id: int, db: AsyncSession = Depends(get_db)):
    car = await get_car(db, car_id)
    return car


@router.put("/{car_id}", response_model=CarResponse, dependencies=[Depends(require_admin)])
async def update_car_endpoint(car_id: int, car_data: CarUpdate, db: AsyncSession = Depends(get_db)):
    return await update_car(db, car_id, car_data)


@router.put("/{car_id}/status", response_model=CarResponse, dependencies=[Depends(require_admin)])
async def update_car_status_endpoint(
    car_id: int,
    status_update: CarStatusUpdate,
    db: AsyncSession = Depends(get_db),
):
    return await update_car_status(db, car_id, status_update.status)


@router.delete("/{car_id}", dependencies=[Depends(require_admin)])
async def delete_car_endpoint(car_id: int, db: AsyncSession = Depends(get_db)):
    """409 while any booking still references the car."""
    await delete_car(db, car_id)
    return {"success": True, "message": "Car deleted successfully"}
