"""Driver and location models."""

from datetime import datetime
from enum import Enum
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class VehicleClass(str, Enum):
    """Vehicle classes a ride can be dispatched to."""

    AUTO = "auto"
    BIKE = "bike"


class Location(BaseModel):
    """Geographic location."""

    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)


class Driver(BaseModel):
    """Driver profile with live dispatch state."""

    id: UUID = Field(default_factory=uuid4)
    user_id: str
    name: str
    phone: str
    vehicle_class: VehicleClass
    vehicle_number: str
    vehicle_model: str | None = None

    # Live state
    is_online: bool = False
    is_available: bool = True
    location: Location | None = None
    location_updated_at: datetime | None = None
    current_ride: UUID | None = None

    # Stats
    total_rides: int = 0
    total_earnings: float = 0.0
    rating_average: float = Field(default=5.0, ge=0, le=5)
    rating_count: int = 0

    @property
    def is_dispatchable(self) -> bool:
        """Check if driver can receive new offers."""
        return self.is_online and self.is_available and self.current_ride is None

    def add_rating(self, rating: int) -> None:
        """Fold a new rating into the running average."""
        total = self.rating_average * self.rating_count + rating
        self.rating_count += 1
        self.rating_average = total / self.rating_count

    def listing(self, with_stats: bool = False) -> dict:
        """Profile without contact details, for maps and driver pages."""
        data = {
            "id": str(self.id),
            "name": self.name,
            "vehicle_class": self.vehicle_class.value,
            "vehicle_number": self.vehicle_number,
            "vehicle_model": self.vehicle_model,
            "rating": round(self.rating_average, 2),
            "location": self.location.model_dump() if self.location else None,
        }
        if with_stats:
            data.update(
                is_online=self.is_online,
                total_rides=self.total_rides,
                total_earnings=self.total_earnings,
                rating_count=self.rating_count,
            )
        return data

    def public_profile(self) -> dict:
        """Profile shown to a requester once this driver is assigned."""
        return {
            "id": str(self.id),
            "name": self.name,
            "phone": self.phone,
            "vehicle_class": self.vehicle_class.value,
            "vehicle_number": self.vehicle_number,
            "rating": round(self.rating_average, 2),
            "location": self.location.model_dump() if self.location else None,
        }
