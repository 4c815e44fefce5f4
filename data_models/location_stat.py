"""LocationStat schemas for per-location scam rollups."""

from datetime import datetime

from pydantic import BaseModel, Field


class TopScamType(BaseModel):
    """One entry of a location's top-category list."""

    type: str
    count: int


class LocationStat(BaseModel):
    """Schema for an aggregated location rollup."""

    id: str | None = None
    country: str
    city: str | None = Field(None, description="None for the country-level aggregate")
    total_scams: int = 0
    top_scam_types: list[TopScamType] = Field(default_factory=list, max_length=5)
    average_money_lost: float | None = None
    latitude: float | None = None
    longitude: float | None = None
    last_updated: datetime | None = None

    class Config:
        from_attributes = True
