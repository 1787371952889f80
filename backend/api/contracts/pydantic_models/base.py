"""
Base Pydantic model for all worker API request bodies.

Key features:
- frozen=True: Immutable after validation
- populate_by_name=True: Accept both the camelCase alias and the field name
- extra='ignore': Ignore undeclared fields (older/newer workers)
- blank strings become None at the boundary
"""

from pydantic import BaseModel, ConfigDict, field_validator


class BaseParamsModel(BaseModel):
    """
    Base model for all request schemas.

    Invariant: after validation, optional string fields are either None
    or non-empty and stripped.
    """
    model_config = ConfigDict(
        frozen=True,
        str_strip_whitespace=True,
        populate_by_name=True,
        extra='ignore',
    )

    @field_validator('*', mode='before')
    @classmethod
    def blank_to_none(cls, v):
        if isinstance(v, str) and v.strip() == '':
            return None
        return v
