# air_quality_station/adapters/api/schemas.py

from datetime import datetime

from pydantic import BaseModel, field_serializer

from air_quality_station.domain.models import Reading, format_timestamp


class ReadingOut(BaseModel):
    id: int
    pm25: float
    pm10: float
    created_at: datetime

    @field_serializer("created_at")
    def _rfc3339(self, value: datetime) -> str:
        return format_timestamp(value)

    @classmethod
    def from_domain(cls, reading: Reading) -> "ReadingOut":
        return cls(
            id=reading.id,
            pm25=reading.pm25,
            pm10=reading.pm10,
            created_at=reading.created_at,
        )
