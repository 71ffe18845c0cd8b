"""Entity registry: maps resource identifiers to the exposed model classes.

The registry is built once at startup from the explicitly exposed models and is
read-only afterwards. ``rebuild`` returns a new registry, the api swaps its
reference wholesale.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterable, Iterator, Mapping, Optional, Tuple

import inflect
from sqlalchemy.orm.interfaces import MANYTOMANY, MANYTOONE, ONETOMANY

import safcrud
from .base import SAFCRUDBase, column_map, primary_key_attrs, relationship_map
from .errors import InvalidResourceError, SystemValidationError
from .hooks import ModelHooks, get_hooks
from .util import kebab_case
from .validation import RulesetProvider

ONE = "one"
MANY = "many"
MANY_TO_MANY = "many-to-many"

_inflect = inflect.engine()


def default_resource_id(model) -> str:
    """
    The kebab-case class name with the last word pluralized:
    ProductCategory => product-categories, Person => people
    """
    words = kebab_case(model.__name__).split("-")
    words[-1] = _inflect.plural_noun(words[-1]) or words[-1]
    return "-".join(words)


def resource_id_for(model) -> str:
    return getattr(model, "_s_resource_id", None) or default_resource_id(model)


@dataclass(frozen=True)
class RelationDescriptor:
    """Describes a relationship of an exposed model"""

    name: str
    related_type_name: str
    related_model: Any
    cardinality: str
    pivot_fields: frozenset = frozenset()
    deletes_with_parent: bool = False
    # the foreign key is stored on the parent row (MANYTOONE)
    owning: bool = False

    @property
    def to_many(self) -> bool:
        return self.cardinality in (MANY, MANY_TO_MANY)

    @classmethod
    def from_relationship(cls, relationship) -> "RelationDescriptor":
        direction = relationship.direction
        if direction == MANYTOMANY:
            cardinality = MANY_TO_MANY
        elif direction == ONETOMANY and relationship.uselist:
            cardinality = MANY
        else:
            cardinality = ONE

        pivot_fields = frozenset()
        if relationship.secondary is not None:
            fk_columns = {col.name for col in relationship.secondary.columns if col.foreign_keys}
            pivot_fields = frozenset(col.name for col in relationship.secondary.columns if col.name not in fk_columns)

        deletes_with_parent = bool(relationship.cascade.delete)
        if not deletes_with_parent and relationship.passive_deletes and direction == ONETOMANY:
            deletes_with_parent = any(
                (fk.ondelete or "").upper() == "CASCADE" for col in relationship.remote_side for fk in col.foreign_keys
            )

        related_model = relationship.mapper.class_
        return cls(
            name=relationship.key,
            related_type_name=related_model.__name__,
            related_model=related_model,
            cardinality=cardinality,
            pivot_fields=pivot_fields,
            deletes_with_parent=deletes_with_parent,
            owning=direction == MANYTOONE,
        )


@dataclass(frozen=True)
class EntityDescriptor:
    """Immutable description of an exposed model"""

    resource_id: str
    type_name: str
    model: Any
    table_name: str
    fillable_fields: frozenset
    relations: Mapping[str, RelationDescriptor]
    unique_fields: Tuple[str, ...]
    validation_rule_provider: Callable[[str, Any], Dict[str, Any]]
    supports_soft_delete: bool
    primary_keys: Tuple[str, ...]
    soft_delete_column: Optional[str] = None
    hooks: Optional[ModelHooks] = None
    default_includes: Tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def from_model(cls, model, hooks=None, resource_id: Optional[str] = None) -> "EntityDescriptor":
        """
        Create the descriptor by inspecting the sqla mapper of the model
        """
        columns = column_map(model)
        primary_keys = tuple(primary_key_attrs(model))
        soft_delete_column = getattr(model, "_s_soft_delete_column", None)
        if soft_delete_column and soft_delete_column not in columns:
            raise SystemValidationError(f'{model.__name__}: soft delete column "{soft_delete_column}" does not exist')

        fillable = set(columns)
        if not getattr(model, "allow_client_generated_ids", False):
            fillable -= set(primary_keys)
        fillable.discard(soft_delete_column)

        unique_fields = tuple(getattr(model, "_s_unique_fields", ()))
        for unique_field in unique_fields:
            if unique_field not in columns:
                raise SystemValidationError(f'{model.__name__}: unique field "{unique_field}" is not a column')

        relations = {name: RelationDescriptor.from_relationship(rel) for name, rel in relationship_map(model).items()}
        default_includes = tuple(getattr(model, "_s_default_includes", ()))

        return cls(
            resource_id=resource_id or resource_id_for(model),
            type_name=model.__name__,
            model=model,
            table_name=getattr(model, "__tablename__", model.__name__),
            fillable_fields=frozenset(fillable),
            relations=MappingProxyType(relations),
            unique_fields=unique_fields,
            validation_rule_provider=RulesetProvider(model),
            supports_soft_delete=bool(soft_delete_column),
            soft_delete_column=soft_delete_column,
            primary_keys=primary_keys,
            hooks=get_hooks(model, hooks),
            default_includes=default_includes,
        )

    @property
    def columns(self):
        return column_map(self.model)

    def get_id(self, instance) -> str:
        """
        :return: the url id of the instance, composite keys are joined with the pk delimiter
        """
        delimiter = safcrud.SAFCRUD.PK_DELIMITER
        return delimiter.join(str(getattr(instance, pk)) for pk in self.primary_keys)

    def get_id_from(self, values: Mapping[str, Any]) -> str:
        """
        :return: the url id for the primary key values in a payload
        """
        delimiter = safcrud.SAFCRUD.PK_DELIMITER
        return delimiter.join(str(values[pk]) for pk in self.primary_keys)

    def split_id(self, item_id: str) -> Dict[str, str]:
        """
        :return: primary key attribute name => value (not yet parsed)
        """
        if len(self.primary_keys) == 1:
            return {self.primary_keys[0]: item_id}
        values = str(item_id).split(safcrud.SAFCRUD.PK_DELIMITER)
        if len(values) != len(self.primary_keys):
            return {}
        return dict(zip(self.primary_keys, values))


class EntityRegistry:
    """
    resource id => EntityDescriptor lookup table
    """

    def __init__(self, descriptors: Optional[Mapping[str, EntityDescriptor]] = None) -> None:
        descriptors = dict(descriptors or {})
        self._descriptors = MappingProxyType(descriptors)
        self._by_model = MappingProxyType({descriptor.model: descriptor for descriptor in descriptors.values()})

    @classmethod
    def build(cls, models: Iterable[Any], hooks: Optional[Mapping[Any, Any]] = None) -> "EntityRegistry":
        """
        Build the registry from the explicitly exposed model classes
        :param models: SAFCRUDBase subclasses
        :param hooks: optional model => ModelHooks mapping, overrides the model `_s_hooks`
        :raises SystemValidationError: colliding or reserved resource ids
        """
        hooks = hooks or {}
        reserved = tuple(safcrud.SAFCRUD.RESERVED_RESOURCE_IDS)
        descriptors = {}
        for model in models:
            if not (isinstance(model, type) and issubclass(model, SAFCRUDBase)):
                safcrud.log.debug(f"Not exposing {model}: not a SAFCRUDBase subclass")
                continue
            if not getattr(model, "_s_expose", False):
                safcrud.log.debug(f"Not exposing {model}: _s_expose not set")
                continue
            if not hasattr(model, "__mapper__"):
                raise SystemValidationError(f"{model} is not a mapped sqlalchemy model")

            descriptor = EntityDescriptor.from_model(model, hooks.get(model))
            resource_id = descriptor.resource_id
            if resource_id in reserved:
                raise SystemValidationError(f'Resource id "{resource_id}" of {model.__name__} is reserved')
            if resource_id in descriptors and descriptors[resource_id].model is not model:
                other = descriptors[resource_id].model.__name__
                raise SystemValidationError(f'Resource id "{resource_id}" is used by {other} and {model.__name__}')
            descriptors[resource_id] = descriptor
            safcrud.log.info(f"Registered {model.__name__} as {resource_id}")

        return cls(descriptors)

    def rebuild(self, models: Iterable[Any], hooks: Optional[Mapping[Any, Any]] = None) -> "EntityRegistry":
        """
        :return: a new registry, this registry is left untouched
        """
        return type(self).build(models, hooks)

    def resolve(self, resource_id: str) -> EntityDescriptor:
        """
        :raises InvalidResourceError: unknown resource id
        """
        try:
            return self._descriptors[resource_id]
        except KeyError:
            raise InvalidResourceError(resource_id)

    def for_model(self, model) -> Optional[EntityDescriptor]:
        return self._by_model.get(model)

    def describe(self, model) -> EntityDescriptor:
        """
        :return: the registered descriptor of the model, or a transient one for models that aren't exposed
        (e.g. nested relation items)
        """
        descriptor = self._by_model.get(model)
        if descriptor is None:
            descriptor = EntityDescriptor.from_model(model, resource_id=default_resource_id(model))
        return descriptor

    @property
    def resource_ids(self):
        return list(self._descriptors.keys())

    def __iter__(self) -> Iterator[EntityDescriptor]:
        return iter(self._descriptors.values())

    def __len__(self) -> int:
        return len(self._descriptors)

    def __contains__(self, resource_id: str) -> bool:
        return resource_id in self._descriptors
