# flake8: noqa: F401
#
# safcrud: generic CRUD api for explicitly exposed SQLAlchemy models
#
from .safcrud_init import log, SAFCRUD, dict_merge
from .request import SafCrudRequest, QueryParams
from .errors import (
    ApiError,
    InvalidRequestError,
    InvalidResourceError,
    InvalidFilterError,
    NotFoundError,
    DependencyConstraintError,
    ValidationError,
    AmbiguousSearchMatchError,
    NoSearchMatchError,
    GenericError,
    SystemValidationError,
)
from .json_encoder import SafCrudJSONProvider, SafCrudJSONEncoder
from .base import SAFCRUDBase
from .hooks import ModelHooks, HookContext
from .response import ApiResponse
from .registry import EntityRegistry, EntityDescriptor, RelationDescriptor
from .controller import ResourceController
from .monitor import Monitor
from .events import entity_created, entity_updated, entity_deleted
from .tx import transaction
from .api import SafCrudApi
from .__about__ import __version__, __description__

__all__ = (
    "__version__",
    "__description__",
    #
    "SafCrudApi",
    "SAFCRUD",
    # db:
    "SAFCRUDBase",
    "ModelHooks",
    "HookContext",
    "EntityRegistry",
    "EntityDescriptor",
    "RelationDescriptor",
    "ResourceController",
    "ApiResponse",
    "Monitor",
    "transaction",
    # events:
    "entity_created",
    "entity_updated",
    "entity_deleted",
    # Errors:
    "ApiError",
    "InvalidRequestError",
    "InvalidResourceError",
    "InvalidFilterError",
    "NotFoundError",
    "DependencyConstraintError",
    "ValidationError",
    "AmbiguousSearchMatchError",
    "NoSearchMatchError",
    "GenericError",
    "SystemValidationError",
    # request
    "SafCrudRequest",
    "QueryParams",
    "SafCrudJSONProvider",
)
