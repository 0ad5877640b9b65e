"""Shared Pydantic schemas for the Clean control plane."""

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Wire models: snake_case in Python, camelCase in JSON."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class HealthResponse(BaseModel):
    status: str = "ok"
    database: str = "ok"
    version: str = "0.1.0"
    service: str = "clean-cloud"


class ErrorResponse(BaseModel):
    error: str
    code: str = ""
