"""
Base Schema Classes for Pydantic Models

RULE: All response schemas that read from ORM models inherit from
BaseResponseSchema.
"""

from pydantic import BaseModel, ConfigDict


class BaseResponseSchema(BaseModel):
    """
    Base class for all response schemas that read from ORM models.

    Usage:
        class ProductResponse(BaseResponseSchema):
            id: UUID
            name: str
    """
    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
    )


class BaseCreateSchema(BaseModel):
    """
    Base class for create/input schemas.

    Unknown fields are ignored so older clients keep working.
    """
    model_config = ConfigDict(
        extra='ignore',
        str_strip_whitespace=True,
    )


class PaginatedResponse(BaseModel):
    """Page metadata shared by list responses."""
    total: int
    page: int
    size: int
    pages: int
