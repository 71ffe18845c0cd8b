"""
Relation persistence: save an item together with its (nested) relationships

payload example for a Product:

    {
        "name": "Widget",
        "price": 9.99,
        "category": {"name": "Tools"},             # to-one: saved first, bound before the insert
        "tags": [{"label": "new"}, 3],              # many-to-many: synced, 3 is a primary key reference
        "supplier": {"_search": {"name": "ACME"}},  # link an existing row matching the criteria
        "reviews": [{"rating": 5}]                  # one-to-many: associated
    }

The persister never commits, it must run inside a `tx.transaction` scope
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from sqlalchemy import and_
from sqlalchemy import inspect as sqla_inspect
from sqlalchemy.orm.exc import UnmappedColumnError
from sqlalchemy.orm.interfaces import ONETOMANY
import safcrud
from .attr_parse import parse_attr
from .base import column_map
from .config import get_config
from .errors import AmbiguousSearchMatchError, NoSearchMatchError, ValidationError
from .query import soft_delete_criteria
from .registry import MANY_TO_MANY, ONE
from .tx import in_transaction
from .util import chunked
from .validation import CREATE, UPDATE, PayloadValidator

SEARCH_KEY = "_search"
PIVOT_KEY = "pivot"
# number of candidate ids reported for an ambiguous search
MAX_SEARCH_CANDIDATES = 25


def _dotted(path: Optional[str], name: Any) -> str:
    return f"{path}.{name}" if path else str(name)


@dataclass
class PersistencePlan:
    scalar_attributes: Dict[str, Any] = field(default_factory=dict)
    relation_payloads: Dict[str, Any] = field(default_factory=dict)


class RelationPersister:
    """
    Persist payloads with nested relationships for the registered entities
    """

    def __init__(self, session, registry, batch_size: Optional[int] = None, validator: Optional[PayloadValidator] = None) -> None:
        self.session = session
        self.registry = registry
        self.batch_size = int(batch_size or get_config("RELATION_BATCH_SIZE") or 1000)
        self.validator = validator or PayloadValidator()
        # pivot values are written once the whole payload has been flushed
        self._pending_pivots = []

    def plan(self, descriptor, payload: Dict[str, Any], path: Optional[str] = None) -> PersistencePlan:
        """
        Split the payload in fillable scalar attributes and relation payloads, unknown keys are dropped
        :raises ValidationError: a scalar value can't be converted to the column type
        """
        plan = PersistencePlan()
        columns = column_map(descriptor.model)
        errors = {}
        for key, value in payload.items():
            if key in descriptor.relations:
                continue
            if key not in descriptor.fillable_fields:
                safcrud.log.debug(f"{descriptor.type_name}: dropping unknown attribute {_dotted(path, key)}")
                continue
            try:
                plan.scalar_attributes[key] = parse_attr(columns[key], value)
            except (TypeError, ValueError) as exc:
                errors[_dotted(path, key)] = [str(exc)]
        if errors:
            raise ValidationError("Validation failed", details=errors)

        # relation payloads follow the declaration order of the relationships
        for rel_name in descriptor.relations:
            if rel_name in payload:
                plan.relation_payloads[rel_name] = payload[rel_name]
        return plan

    def save_with_relations(
        self,
        descriptor,
        payload: Dict[str, Any],
        existing: Any = None,
        avoid_duplicates: bool = False,
        replace_relations: bool = False,
        path: Optional[str] = None,
    ):
        """
        Save `payload` as a new item, or as an update of `existing`

        :param descriptor: EntityDescriptor
        :param payload: attribute values and relation payloads
        :param existing: instance to be updated
        :param avoid_duplicates: reuse the item matching the unique fields of the payload
        :param replace_relations: detach one-to-many children that are not in the payload
        :param path: dotted path of a nested item, used in error details
        :return: the saved instance (flushed, not committed)
        """
        if not in_transaction():
            safcrud.log.warning(f"Saving {descriptor.type_name} outside of a transaction")

        plan = self.plan(descriptor, payload, path)
        # pending children are only flushed once they're associated with their parent
        with self.session.no_autoflush:
            instance = existing
            if instance is None and avoid_duplicates:
                instance = self.find_duplicate(descriptor, plan.scalar_attributes)
                if instance is not None:
                    safcrud.log.debug(f"{descriptor.type_name}: duplicate found, updating {descriptor.get_id(instance)}")

            is_new = instance is None
            if is_new:
                instance = descriptor.model()

            for attr_name, attr_val in plan.scalar_attributes.items():
                setattr(instance, attr_name, attr_val)

            # the foreign key of a to-one relationship is part of the row: bind it before the first flush
            later = []
            for rel_name, rel_payload in plan.relation_payloads.items():
                relation = descriptor.relations[rel_name]
                if relation.owning:
                    self.save_relation(descriptor, instance, relation, rel_payload, avoid_duplicates, replace_relations, path)
                else:
                    later.append((relation, rel_payload))

            if is_new:
                self.session.add(instance)

            for relation, rel_payload in later:
                self.save_relation(descriptor, instance, relation, rel_payload, avoid_duplicates, replace_relations, path)

        if path is None:
            self.session.flush()
            pending_pivots, self._pending_pivots = self._pending_pivots, []
            for pivot in pending_pivots:
                self.update_pivot(*pivot)
        return instance

    def find_duplicate(self, descriptor, scalars: Dict[str, Any]):
        """
        Look up an item matching the unique fields present in `scalars`, absent fields don't restrict
        Items pending in the session are checked first, so repeated items in one payload collapse into one
        The row is locked (SELECT ... FOR UPDATE) until the transaction ends
        """
        criteria = {name: scalars[name] for name in descriptor.unique_fields if name in scalars}
        if not criteria:
            return None

        for pending in list(self.session.new):
            if isinstance(pending, descriptor.model) and all(getattr(pending, k, None) == v for k, v in criteria.items()):
                return pending

        query = soft_delete_criteria(self.session.query(descriptor.model), descriptor)
        return query.filter_by(**criteria).with_for_update().first()

    def save_relation(self, descriptor, instance, relation, value, avoid_duplicates=False, replace_relations=False, path=None) -> None:
        """
        Save the items of one relationship and associate them with `instance`
        """
        rel_path = _dotted(path, relation.name)
        child_descriptor = self.registry.describe(relation.related_model)
        exempt = self._parent_key_fields(descriptor.model, relation.name)

        if relation.cardinality == ONE:
            if value is None:
                setattr(instance, relation.name, None)
                return
            if isinstance(value, list):
                raise ValidationError("Validation failed", details={rel_path: ["A single item is expected"]})
            child = self.save_item(child_descriptor, value, rel_path, avoid_duplicates, replace_relations, exempt)
            setattr(instance, relation.name, child)
            return

        if not isinstance(value, list):
            raise ValidationError("Validation failed", details={rel_path: ["A list of items is expected"]})

        children = []
        pivots = []
        many_to_many = relation.cardinality == MANY_TO_MANY
        collection = None if many_to_many else getattr(instance, relation.name)
        present = set() if many_to_many else {id(child) for child in collection}
        for batch in chunked(enumerate(value), self.batch_size):
            for index, item in batch:
                item_path = _dotted(rel_path, index)
                child = self.save_item(child_descriptor, item, item_path, avoid_duplicates, replace_relations, exempt)
                children.append(child)
                if many_to_many and isinstance(item, dict) and item.get(PIVOT_KEY):
                    pivots.append((instance, relation, child, item[PIVOT_KEY], item_path))
                if not many_to_many and id(child) not in present:
                    # associate before the flush, the child row holds the foreign key
                    collection.append(child)
                    present.add(id(child))
            if path is None:
                self.session.flush()

        unique_children = list({id(child): child for child in children}.values())
        if many_to_many:
            # sync: the association is replaced wholesale
            setattr(instance, relation.name, unique_children)
            self._pending_pivots += pivots
        elif replace_relations:
            setattr(instance, relation.name, unique_children)

    def save_item(self, descriptor, item, path, avoid_duplicates=False, replace_relations=False, exempt=()):
        """
        Resolve or save a single relation item:
        - {"_search": {...}}: existing row matching all criteria
        - scalar: primary key reference
        - dict: nested payload, an update when it contains the primary key of an existing row
        """
        if isinstance(item, dict) and SEARCH_KEY in item:
            return self.search(descriptor, item[SEARCH_KEY], path)

        if not isinstance(item, dict):
            if isinstance(item, (str, int)) and not isinstance(item, bool):
                child = self._get_by_id(descriptor, item)
                if child is None:
                    raise NoSearchMatchError(path, {"id": item})
                return child
            raise ValidationError("Validation failed", details={path: ["Invalid relation item"]})

        payload = {k: v for k, v in item.items() if k != PIVOT_KEY}
        existing = None
        if all(payload.get(pk) is not None for pk in descriptor.primary_keys):
            existing = self._get_by_id(descriptor, descriptor.get_id_from(payload))
            if existing is None and not getattr(descriptor.model, "allow_client_generated_ids", False):
                raise NoSearchMatchError(path, {pk: payload[pk] for pk in descriptor.primary_keys})

        action = UPDATE if existing is not None else CREATE
        self.validator.validate(descriptor, action, payload, existing, prefix=path, exempt=exempt)
        return self.save_with_relations(descriptor, payload, existing, avoid_duplicates, replace_relations, path=path)

    def search(self, descriptor, criteria: Any, path: str):
        """
        :return: the only row matching all criteria
        :raises NoSearchMatchError: nothing matches
        :raises AmbiguousSearchMatchError: more than one row matches
        """
        search_path = _dotted(path, SEARCH_KEY)
        if not isinstance(criteria, dict) or not criteria:
            raise ValidationError("Validation failed", details={search_path: ["Search criteria should be a non-empty object"]})

        columns = column_map(descriptor.model)
        parsed = {}
        errors = {}
        for name, value in criteria.items():
            if name not in columns:
                errors[_dotted(search_path, name)] = ["Unknown field"]
                continue
            try:
                parsed[name] = parse_attr(columns[name], value)
            except (TypeError, ValueError) as exc:
                errors[_dotted(search_path, name)] = [str(exc)]
        if errors:
            raise ValidationError("Validation failed", details=errors)

        query = soft_delete_criteria(self.session.query(descriptor.model), descriptor).filter_by(**parsed)
        order = [getattr(descriptor.model, pk) for pk in descriptor.primary_keys]
        candidates = query.order_by(*order).limit(MAX_SEARCH_CANDIDATES + 1).all()
        if not candidates:
            raise NoSearchMatchError(path, criteria)
        if len(candidates) > 1:
            raise AmbiguousSearchMatchError(path, criteria, [descriptor.get_id(c) for c in candidates[:MAX_SEARCH_CANDIDATES]])
        return candidates[0]

    def update_pivot(self, instance, relation, child, pivot_values: Any, path: str) -> None:
        """
        Write the extra columns of the association table row linking `instance` and `child`
        """
        pivot_path = _dotted(path, PIVOT_KEY)
        if not isinstance(pivot_values, dict):
            raise ValidationError("Validation failed", details={pivot_path: ["Pivot values should be an object"]})
        unknown = [name for name in pivot_values if name not in relation.pivot_fields]
        if unknown:
            raise ValidationError("Validation failed", details={_dotted(pivot_path, name): ["Unknown pivot field"] for name in unknown})

        relationship = sqla_inspect(type(instance)).relationships[relation.name]
        parent_mapper = sqla_inspect(type(instance))
        child_mapper = sqla_inspect(type(child))
        conditions = [
            secondary_col == getattr(instance, parent_mapper.get_property_by_column(parent_col).key)
            for parent_col, secondary_col in relationship.synchronize_pairs
        ]
        conditions += [
            secondary_col == getattr(child, child_mapper.get_property_by_column(child_col).key)
            for child_col, secondary_col in relationship.secondary_synchronize_pairs
        ]
        self.session.execute(relationship.secondary.update().where(and_(*conditions)).values(**pivot_values))

    def _get_by_id(self, descriptor, item_id):
        criteria = descriptor.split_id(str(item_id))
        if not criteria:
            return None
        columns = column_map(descriptor.model)
        try:
            criteria = {name: parse_attr(columns[name], value) for name, value in criteria.items()}
        except (TypeError, ValueError):
            return None
        query = soft_delete_criteria(self.session.query(descriptor.model), descriptor)
        return query.filter_by(**criteria).one_or_none()

    @staticmethod
    def _parent_key_fields(model, rel_name: str) -> List[str]:
        """
        :return: the attribute names of the child foreign key columns that are set when a one-to-many child
        is associated with its parent, these are not required in the nested payload
        """
        relationship = sqla_inspect(model).relationships[rel_name]
        if relationship.secondary is not None or relationship.direction != ONETOMANY:
            return []
        child_mapper = relationship.mapper
        result = []
        for column in relationship.remote_side:
            try:
                result.append(child_mapper.get_property_by_column(column).key)
            except UnmappedColumnError:
                safcrud.log.debug(f"No attribute for {column} in {child_mapper.class_.__name__}")
        return result
