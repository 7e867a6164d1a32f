"""Error response payloads returned by the request pipeline."""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ErrorResponse(BaseModel):
    """Body written by the exception translation middleware (``statusCode``)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    message: str
    status_code: int
    details: str = ""


class RateLimitDetails(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    endpoint: str
    route_class: str
    limit: int
    window: str
    reset_time: str


class RateLimitErrorResponse(BaseModel):
    """429 body. Serialized with camelCase keys (``retryAfter``)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    error: str = "Rate limit exceeded"
    message: str
    retry_after: int
    details: RateLimitDetails | None = Field(default=None)


__all__ = [
    "ErrorResponse",
    "RateLimitDetails",
    "RateLimitErrorResponse",
]
