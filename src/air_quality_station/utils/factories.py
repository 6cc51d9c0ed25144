from datetime import datetime, timezone

import factory

from air_quality_station.domain.models import Reading


class ReadingFactory(factory.Factory):
    class Meta:
        model = Reading

    id = factory.Sequence(lambda n: n + 1)
    pm25 = 12.5
    pm10 = 20.0
    created_at = factory.LazyFunction(lambda: datetime.now(tz=timezone.utc))
