from marshmallow import fields
from porter_operator.types.base import BaseSchema
from porter_operator.types.models import CredentialSetSpec
from porter_operator.types.schemas.common import (
    LocalObjectReferenceSchema,
    NamedValueSourceSchema,
)


class CredentialSetSpecSchema(BaseSchema):
    __model__ = CredentialSetSpec

    agent_config = fields.Nested(
        LocalObjectReferenceSchema(),
        data_key="agentConfig",
        allow_none=True,
        load_default=None,
    )
    porter_config = fields.Nested(
        LocalObjectReferenceSchema(),
        data_key="porterConfig",
        allow_none=True,
        load_default=None,
    )
    schema_version = fields.Str(data_key="schemaVersion", allow_none=True, load_default=None)
    name = fields.Str(data_key="name", allow_none=True, load_default=None)
    namespace = fields.Str(data_key="namespace", allow_none=True, load_default=None)
    labels = fields.Dict(
        keys=fields.Str(),
        values=fields.Str(),
        data_key="labels",
        allow_none=True,
        load_default=None,
    )
    credentials = fields.List(
        fields.Nested(NamedValueSourceSchema()),
        data_key="credentials",
        allow_none=False,
        load_default=list,
    )
