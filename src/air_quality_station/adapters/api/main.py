from fastapi import FastAPI

from air_quality_station.adapters.api.routes import router
from air_quality_station.application.query_readings import QueryService


def create_app(query_service: QueryService) -> FastAPI:
    app = FastAPI(title="Air Quality Station")
    app.state.query_service = query_service
    app.include_router(router)
    return app
