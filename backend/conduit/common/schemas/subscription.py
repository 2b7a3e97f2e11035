from typing import Annotated

from pydantic import BaseModel, Field


class MappingRule(BaseModel):
    """One `{expression, target}` mapping; `target` is a dot path into the output payload."""

    expression: str = Field(description="Template, e.g. '{{ upper(user.name) }}'")
    target: Annotated[str, Field(min_length=1, description="Dot path, e.g. 'customer.name'")]
