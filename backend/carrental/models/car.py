"""
Car model: the rentable vehicle inventory.
"""

from sqlalchemy import Column, Integer, String, Float, CheckConstraint

from carrental.db.base import Base, TimestampMixin


class CarStatus:
    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"

    ALL = (AVAILABLE, UNAVAILABLE)


class Car(Base, TimestampMixin):
    __tablename__ = "cars"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    brand = Column(String(100), nullable=False)
    type = Column(String(50), nullable=True)
    transmission = Column(String(50), nullable=True)
    fuel = Column(String(50), nullable=True)
    price_per_day = Column(Float, nullable=False)
    status = Column(String(20), nullable=False, default=CarStatus.AVAILABLE)

    __table_args__ = (
        CheckConstraint("price_per_day > 0", name="check_car_price_positive"),
        CheckConstraint("status IN ('available', 'unavailable')", name="check_car_status"),
    )

    def __repr__(self) -> str:
        return f"<Car(id={self.id}, name={self.name}, status={self.status})>"
