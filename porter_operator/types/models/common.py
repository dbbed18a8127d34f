from typing import Optional
from porter_operator.types.base import BaseModel


class LocalObjectReference(BaseModel):
    name: Optional[str]


class ValueSource(BaseModel):
    """Where porter resolves a credential or parameter value from."""

    secret: Optional[str]
    value: Optional[str]
    env: Optional[str]
    path: Optional[str]
    command: Optional[str]


class NamedValueSource(BaseModel):
    name: str
    source: ValueSource
