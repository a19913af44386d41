"""
Base pydantic schema for the JSON surface.

Store rows and Python attributes are snake_case; clients send and receive camelCase.
Every request/response schema inherits from CamelModel so the translation lives in
exactly one place.
"""
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """
    Schema base that serializes field names as camelCase.

    Input accepts either spelling (``organization_id`` or ``organizationId``).
    """
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )
