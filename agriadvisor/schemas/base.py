"""
Base Pydantic schemas.

This module contains base schemas with common fields and configurations
that other schemas can inherit from.
"""

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class BaseSchema(BaseModel):
    """
    Base schema with common configuration.

    Fields are snake_case in Python and camelCase on the wire, which is
    what the dashboard client sends and expects. Either spelling is
    accepted on input.
    """

    model_config = ConfigDict(
        from_attributes=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def to_store(self) -> dict:
        """Serialize for the key-value store using wire field names."""
        return self.model_dump(mode="json", by_alias=True)


class Coordinates(BaseSchema):
    """Geographic position."""
    lat: float
    lon: float
