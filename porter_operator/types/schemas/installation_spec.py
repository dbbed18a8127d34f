from marshmallow import fields
from porter_operator.types.base import BaseSchema
from porter_operator.types.models import InstallationSpec, BundleReference
from porter_operator.types.schemas.common import LocalObjectReferenceSchema


class BundleReferenceSchema(BaseSchema):
    __model__ = BundleReference

    repository = fields.Str(data_key="repository", allow_none=True, load_default=None)
    version = fields.Str(data_key="version", allow_none=True, load_default=None)
    digest = fields.Str(data_key="digest", allow_none=True, load_default=None)
    tag = fields.Str(data_key="tag", allow_none=True, load_default=None)


class InstallationSpecSchema(BaseSchema):
    __model__ = InstallationSpec

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
    uninstalled = fields.Bool(data_key="uninstalled", allow_none=True, load_default=None)
    bundle = fields.Nested(
        BundleReferenceSchema(), data_key="bundle", allow_none=True, load_default=None
    )
    labels = fields.Dict(
        keys=fields.Str(),
        values=fields.Str(),
        data_key="labels",
        allow_none=True,
        load_default=None,
    )
    parameters = fields.Dict(
        keys=fields.Str(), data_key="parameters", allow_none=True, load_default=None
    )
    credential_sets = fields.List(
        fields.Str(), data_key="credentialSets", allow_none=True, load_default=None
    )
    parameter_sets = fields.List(
        fields.Str(), data_key="parameterSets", allow_none=True, load_default=None
    )
