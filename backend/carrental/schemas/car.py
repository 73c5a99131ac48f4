"""
Pydantic schemas for car inventory.
"""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field


class CarCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    brand: str = Field(..., min_length=1, max_length=100)
    type: Optional[str] = Field(None, max_length=50)
    transmission: Optional[str] = Field(None, max_length=50)
    fuel: Optional[str] = Field(None, max_length=50)
    price_per_day: float = Field(..., gt=0)
    status: Literal["available", "unavailable"] = "available"


class CarResponse(BaseModel):
    id: int
    name: str
    brand: str
    type: Optional[str]
    transmission: Optional[str]
    fuel: Optional[str]
    price_per_day: float
    status: str
    created_at: datetime

    model_config = {"from_attributes": True}


class CarListResponse(BaseModel):
    cars: list[CarResponse]
    total: int
    page: int
    page_size: int


class CarUpdate(BaseModel):
    """Partial edit; omitted fields keep their value."""

    name: Optional[str] = Field(None, min_length=1, max_length=255)
    brand: Optional[str] = Field(None, min_length=1, max_length=100)
    type: Optional[str] = Field(None, max_length=50)
    transmission: Optional[str] = Field(None, max_length=50)
    fuel: Optional[str] = Field(None, max_length=50)
    price_per_day: Optional[float] = Field(None, gt=0)


class CarStatusUpdate(BaseModel):
    status: Literal["available", "unavailable"]
