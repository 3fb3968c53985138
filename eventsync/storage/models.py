"""Pydantic models for canonical entities."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, time
from typing import Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator

VENUE_FIELDS = (
    "street",
    "city",
    "state",
    "zip",
    "country",
    "phone",
    "website",
    "capacity",
    "coordinates",
    "description",
)


class StandardizedEvent(BaseModel):
    """Canonical representation every source maps into."""

    model_config = ConfigDict(frozen=True)

    title: str
    start_date: date
    identifier: str = Field(..., pattern=r"^[0-9a-f]{32}$")
    source_id: str = ""
    description: Optional[str] = None
    end_date: Optional[date] = None
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    venue_name: str = ""
    address: str = ""
    location_name: str = ""
    ticket_url: Optional[str] = None
    price: Optional[str] = None
    venue_metadata: Dict[str, str] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _end_not_before_start(self) -> "StandardizedEvent":
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError("end_date precedes start_date")
        return self


class Venue(BaseModel):
    """A named location with address and contact metadata."""

    name: str
    street: str = ""
    city: str = ""
    state: str = ""
    zip: str = ""
    country: str = ""
    phone: str = ""
    website: str = ""
    capacity: Optional[int] = None
    coordinates: Optional[Tuple[float, float]] = None
    description: str = ""


@dataclass(frozen=True)
class VenueRef:
    """Handle to a persisted venue."""

    venue_id: int
    name: str
    created: bool = False


@dataclass(frozen=True)
class PublishedRef:
    """Outcome of publishing one event."""

    identifier: str
    record_id: int
    action: str
