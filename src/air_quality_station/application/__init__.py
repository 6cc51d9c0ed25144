from .query_readings import QueryService

__all__ = [
    "QueryService",
]
