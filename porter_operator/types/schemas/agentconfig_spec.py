from marshmallow import fields
from porter_operator.types.base import BaseSchema
from porter_operator.types.models import AgentConfigSpec, PluginFileSpec, Plugin


class PluginSchema(BaseSchema):
    __model__ = Plugin

    feed_url = fields.Str(data_key="feedURL", allow_none=True, load_default=None)
    url = fields.Str(data_key="url", allow_none=True, load_default=None)
    mirror = fields.Str(data_key="mirror", allow_none=True, load_default=None)
    version = fields.Str(data_key="version", allow_none=True, load_default=None)


class PluginFileSpecSchema(BaseSchema):
    __model__ = PluginFileSpec

    schema_version = fields.Str(data_key="schemaVersion", allow_none=True, load_default=None)
    plugins = fields.Dict(
        keys=fields.Str(),
        values=fields.Nested(PluginSchema()),
        data_key="plugins",
        allow_none=True,
        load_default=None,
    )


class AgentConfigSpecSchema(BaseSchema):
    __model__ = AgentConfigSpec

    porter_repository = fields.Str(data_key="porterRepository", allow_none=True, load_default=None)
    porter_version = fields.Str(data_key="porterVersion", allow_none=True, load_default=None)
    service_account = fields.Str(data_key="serviceAccount", allow_none=True, load_default=None)
    storage_class_name = fields.Str(data_key="storageClassName", allow_none=True, load_default=None)
    volume_size = fields.Str(data_key="volumeSize", allow_none=True, load_default=None)
    pull_policy = fields.Str(data_key="pullPolicy", allow_none=True, load_default=None)
    installation_service_account = fields.Str(
        data_key="installationServiceAccount", allow_none=True, load_default=None
    )
    plugin_config_file = fields.Nested(
        PluginFileSpecSchema(),
        data_key="pluginConfigFile",
        allow_none=True,
        load_default=None,
    )
