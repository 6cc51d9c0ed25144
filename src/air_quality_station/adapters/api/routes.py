# air_quality_station/adapters/api/routes.py

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request

from air_quality_station.adapters.api.schemas import ReadingOut
from air_quality_station.application.query_readings import QueryService
from air_quality_station.domain.errors import InvalidTimeRange, StoreError

log = logging.getLogger(__name__)

router = APIRouter()


def get_query_service(request: Request) -> QueryService:
    return request.app.state.query_service


@router.get("/ping")
def ping():
    return {"status": "ok"}


@router.get("/data", response_model=list[ReadingOut])
def data(
    start: Optional[str] = None,
    end: Optional[str] = None,
    service: QueryService = Depends(get_query_service),
):
    try:
        readings = service.range(start, end)
    except InvalidTimeRange as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except StoreError as exc:
        log.error("Could not read from database: %s", exc)
        raise HTTPException(status_code=500, detail="Could not read from database") from exc
    return [ReadingOut.from_domain(r) for r in readings]


@router.get("/data-options", response_model=list[str])
def data_options(service: QueryService = Depends(get_query_service)):
    try:
        return service.all_keys()
    except StoreError as exc:
        log.error("Could not read from database: %s", exc)
        raise HTTPException(status_code=500, detail="Could not read from database") from exc
