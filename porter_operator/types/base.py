from types import SimpleNamespace
from typing import Any, Dict
from marshmallow import EXCLUDE, Schema, post_dump, post_load

JSON = Dict[str, Any]
MAX_REPR_LEN = 50


class BaseModel(SimpleNamespace):
    """BaseModel that all models should inherit from.

    Args:
        **kwargs: All passed parameters as converted to instance attributes.
    """

    def __init__(self, **kwargs: Any) -> None:
        self.__dict__.update(kwargs)

    def __repr__(self) -> str:
        """Return a default repr of any Model, truncated to `MAX_REPR_LEN`."""
        repr_ = super().__repr__()
        if len(repr_) > MAX_REPR_LEN:
            return repr_[:MAX_REPR_LEN] + " ...)"
        else:
            return repr_


class BaseSchema(Schema):
    """The default schema for all models.

    Loading builds the `__model__` class. Dumping drops empty optional fields so
    that documents handed to porter only carry what the user configured.
    """

    __model__: Any = BaseModel
    """Determine the object that is created when the load method is called."""

    class Meta:
        unknown = EXCLUDE
        ordered = True

    @post_load
    def make_object(self, data: JSON, **kwargs: Any) -> "__model__":
        return self.__model__(**data)

    @post_dump
    def drop_empty(self, data: JSON, **kwargs: Any) -> JSON:
        return {k: v for k, v in data.items() if v not in (None, "", [], {})}
