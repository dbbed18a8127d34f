from marshmallow import fields
from porter_operator.types.base import BaseSchema
from porter_operator.types.models import (
    LocalObjectReference,
    ValueSource,
    NamedValueSource,
)


class LocalObjectReferenceSchema(BaseSchema):
    __model__ = LocalObjectReference

    name = fields.Str(data_key="name", allow_none=True, load_default=None)


class ValueSourceSchema(BaseSchema):
    __model__ = ValueSource

    secret = fields.Str(data_key="secret", allow_none=True, load_default=None)
    value = fields.Str(data_key="value", allow_none=True, load_default=None)
    env = fields.Str(data_key="env", allow_none=True, load_default=None)
    path = fields.Str(data_key="path", allow_none=True, load_default=None)
    command = fields.Str(data_key="command", allow_none=True, load_default=None)


class NamedValueSourceSchema(BaseSchema):
    __model__ = NamedValueSource

    name = fields.Str(data_key="name", required=True)
    source = fields.Nested(ValueSourceSchema(), data_key="source", required=True)
