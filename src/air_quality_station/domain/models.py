import json
from dataclasses import dataclass
from datetime import datetime, timezone

RFC3339_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def to_utc(value: datetime) -> datetime:
    """Return *value* as an aware UTC datetime; naive values are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def format_timestamp(value: datetime) -> str:
    return to_utc(value).strftime(RFC3339_FORMAT)


def parse_timestamp(text: str) -> datetime:
    """Parse RFC 3339 text (``Z`` suffix or numeric offset) into an aware UTC datetime.

    Raises:
        ValueError: If *text* is not a valid timestamp.
    """
    text = text.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    return to_utc(datetime.fromisoformat(text))


@dataclass(frozen=True)
class Reading:
    """A decoded, validated particulate-matter sample.

    Attributes:
        id: Store-assigned sequence number, strictly increasing in write order.
        pm25: PM2.5 concentration in μg/m³.
        pm10: PM10 concentration in μg/m³.
        created_at: UTC time the reading was written (the sensor has no clock).
    """

    id: int
    pm25: float
    pm10: float
    created_at: datetime

    def to_record(self) -> dict:
        return {
            "id": self.id,
            "pm25": self.pm25,
            "pm10": self.pm10,
            "created_at": format_timestamp(self.created_at),
        }

    def to_string(self) -> str:
        return json.dumps(self.to_record())

    @classmethod
    def from_string(cls, data: str) -> "Reading":
        d = json.loads(data)
        return cls(
            id=int(d["id"]),
            pm25=float(d["pm25"]),
            pm10=float(d["pm10"]),
            created_at=parse_timestamp(d["created_at"]),
        )
