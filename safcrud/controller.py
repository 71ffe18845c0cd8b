# Resource controller: the generic CRUD operations of the exposed entities
#
# Operation states: Resolving -> Validating -> Persisting/Querying -> Formatting -> Done / Failed
# Validation and resolution happen before any transaction is started,
# writes run inside a tx.transaction scope that is rolled back on every failure path
#
from contextlib import contextmanager, nullcontext
from http import HTTPStatus
from typing import Any, Dict, Iterable, Optional
from sqlalchemy import exc as sqla_exc
from sqlalchemy import func, select
from sqlalchemy import inspect as sqla_inspect
from sqlalchemy.orm import with_parent
from sqlalchemy.orm.interfaces import ONETOMANY
import safcrud
from .base import encode_instance, parse_include_tree
from .config import parse_bool
from .errors import DependencyConstraintError, InvalidRequestError, NotFoundError
from .events import entity_created, entity_deleted, entity_updated, send_event
from .hooks import HookContext, run_hook
from .persistence import RelationPersister
from .query import QueryBuilder
from .registry import MANY_TO_MANY
from .request import QueryParams
from .response import ApiResponse
from .tx import RollbackRequest, transaction
from .validation import CREATE, UPDATE, PayloadValidator

AVOID_DUPLICATES = "avoid_duplicates"

MSG_CREATED = "Resource created successfully."
MSG_UPDATED = "Resource updated successfully."
MSG_DELETED = "Resource deleted successfully."
MSG_DEPENDENTS = "The resource can't be deleted because dependent records exist."


class ResourceController:
    """
    Generic CRUD operations on the entities of a registry

    :param registry: EntityRegistry
    :param session: sqlalchemy session
    :param persister: RelationPersister
    :param query_builder: QueryBuilder
    :param monitor: optional Monitor
    """

    def __init__(self, registry, session, persister=None, query_builder=None, monitor=None, validator=None) -> None:
        self.registry = registry
        self.session = session
        self.validator = validator or PayloadValidator()
        self.persister = persister or RelationPersister(session, registry, validator=self.validator)
        self.query_builder = query_builder or QueryBuilder(session)
        self.monitor = monitor

    @contextmanager
    def _operation(self, action: str, resource_id: str):
        """
        Resolve the descriptor and measure the operation
        """
        safcrud.log.debug(f"{action} {resource_id}: resolving")
        descriptor = self.registry.resolve(resource_id)
        scope = self.monitor.operation(descriptor.type_name, action) if self.monitor is not None else nullcontext()
        with scope:
            try:
                yield descriptor
            except Exception as exc:
                safcrud.log.debug(f"{action} {resource_id}: failed ({type(exc).__name__})")
                raise
        safcrud.log.debug(f"{action} {resource_id}: done")

    def _context(self, descriptor, action: str, params: Optional[QueryParams]) -> HookContext:
        return HookContext(descriptor=descriptor, session=self.session, action=action, params=params)

    def _format(self, descriptor, instance, params: QueryParams, touched: Iterable[str] = ()) -> Dict[str, Any]:
        includes = list(params.includes) or list(descriptor.default_includes)
        includes += [rel_name for rel_name in touched if rel_name not in includes]
        tree = self.query_builder.validate_includes(descriptor.model, includes)
        fields = self.query_builder.validate_fields(descriptor.model, params.fields)
        return encode_instance(instance, fields, tree)

    def _fetch(self, descriptor, item_id, params: QueryParams, with_trashed: Optional[bool] = None):
        with_trashed = params.with_trashed if with_trashed is None else with_trashed
        instance = self.query_builder.get_instance(descriptor, item_id, with_trashed=with_trashed)
        if instance is None:
            raise NotFoundError(f'{descriptor.type_name} "{item_id}" not found')
        return instance

    @staticmethod
    def _check_payload(payload: Any) -> Dict[str, Any]:
        if not isinstance(payload, dict):
            raise InvalidRequestError("Invalid JSON payload: an object is expected")
        return dict(payload)

    @staticmethod
    def _avoid_duplicates(payload: Dict[str, Any], params: QueryParams) -> bool:
        # accepted in the query string and in the body, removed before persistence
        in_body = payload.pop(AVOID_DUPLICATES, None)
        try:
            return params.avoid_duplicates or parse_bool(in_body)
        except ValueError:
            raise InvalidRequestError(f'Invalid boolean value for "{AVOID_DUPLICATES}"')

    def index(self, resource_id: str, params: Optional[QueryParams] = None) -> ApiResponse:
        """
        Filtered, sorted and paginated list, an empty result is a success
        """
        params = params or QueryParams()
        with self._operation("index", resource_id) as descriptor:
            includes = list(params.includes) or list(descriptor.default_includes)
            safcrud.log.debug(f"index {resource_id}: querying")
            query = self.query_builder.build_query(
                descriptor,
                filters=params.filters,
                sorts=params.sorts,
                with_trashed=params.with_trashed,
                only_trashed=params.only_trashed,
                includes=includes,
            )
            page = self.query_builder.paginate(query, descriptor, params.page, params.per_page)
            safcrud.log.debug(f"index {resource_id}: formatting {len(page.items)} items")
            tree = parse_include_tree(includes)
            fields = self.query_builder.validate_fields(descriptor.model, params.fields)
            data = [encode_instance(item, fields, tree) for item in page.items]
            return ApiResponse.success(data, None, meta=page.meta)

    def show(self, resource_id: str, item_id: Any, params: Optional[QueryParams] = None) -> ApiResponse:
        params = params or QueryParams()
        with self._operation("show", resource_id) as descriptor:
            instance = self._fetch(descriptor, item_id, params)
            return ApiResponse.success(self._format(descriptor, instance, params), None)

    def store(self, resource_id: str, payload: Any, params: Optional[QueryParams] = None) -> ApiResponse:
        """
        Create an item with its nested relations
        """
        params = params or QueryParams()
        with self._operation("store", resource_id) as descriptor:
            payload = self._check_payload(payload)
            avoid_duplicates = self._avoid_duplicates(payload, params)
            safcrud.log.debug(f"store {resource_id}: validating")
            self.validator.validate(descriptor, CREATE, payload)

            context = self._context(descriptor, "store", params)
            try:
                with transaction(self.session, "store", descriptor.type_name):
                    response = run_hook(descriptor.hooks, "before_create", payload, context)
                    if response is not None:
                        raise RollbackRequest(response)
                    safcrud.log.debug(f"store {resource_id}: persisting")
                    instance = self.persister.save_with_relations(
                        descriptor, payload, avoid_duplicates=avoid_duplicates, replace_relations=params.replace_relations
                    )
                    run_hook(descriptor.hooks, "after_create", instance, payload, context)
            except RollbackRequest as rollback:
                return rollback.response

            send_event(entity_created, descriptor.model, instance)
            touched = [rel_name for rel_name in descriptor.relations if rel_name in payload]
            return ApiResponse.success(self._format(descriptor, instance, params, touched), MSG_CREATED, HTTPStatus.CREATED.value)

    def update(self, resource_id: str, item_id: Any, payload: Any, params: Optional[QueryParams] = None) -> ApiResponse:
        """
        Update an item, relations that are omitted from the payload are left untouched
        """
        params = params or QueryParams()
        with self._operation("update", resource_id) as descriptor:
            instance = self._fetch(descriptor, item_id, params)
            payload = self._check_payload(payload)
            avoid_duplicates = self._avoid_duplicates(payload, params)
            safcrud.log.debug(f"update {resource_id}: validating")
            self.validator.validate(descriptor, UPDATE, payload, instance)

            context = self._context(descriptor, "update", params)
            try:
                with transaction(self.session, "update", descriptor.type_name, item_id):
                    response = run_hook(descriptor.hooks, "before_update", instance, payload, context)
                    if response is not None:
                        raise RollbackRequest(response)
                    safcrud.log.debug(f"update {resource_id}: persisting")
                    instance = self.persister.save_with_relations(
                        descriptor, payload, existing=instance, avoid_duplicates=avoid_duplicates, replace_relations=params.replace_relations
                    )
                    run_hook(descriptor.hooks, "after_update", instance, payload, context)
            except RollbackRequest as rollback:
                return rollback.response

            send_event(entity_updated, descriptor.model, instance)
            touched = [rel_name for rel_name in descriptor.relations if rel_name in payload]
            return ApiResponse.success(self._format(descriptor, instance, params, touched), MSG_UPDATED)

    def dependents(self, descriptor, instance) -> Dict[str, int]:
        """
        :return: relation name => number of children that block a hard delete
        (one-to-many relations that don't delete with their parent)
        """
        result = {}
        relationships = sqla_inspect(descriptor.model).relationships
        for relation in descriptor.relations.values():
            if relation.deletes_with_parent or relation.owning or relation.cardinality == MANY_TO_MANY:
                continue
            relationship = relationships[relation.name]
            if relationship.direction != ONETOMANY or relationship.viewonly:
                continue
            children = select(func.count()).select_from(relation.related_model).where(with_parent(instance, getattr(descriptor.model, relation.name)))
            count = self.session.scalar(children)
            if count:
                result[relation.name] = count
        return result

    def destroy(self, resource_id: str, item_id: Any, params: Optional[QueryParams] = None) -> ApiResponse:
        """
        Delete an item, soft deletable items are marked as deleted unless `force` is set
        """
        params = params or QueryParams()
        with self._operation("destroy", resource_id) as descriptor:
            force = params.force
            instance = self._fetch(descriptor, item_id, params, with_trashed=force or params.with_trashed)
            context = self._context(descriptor, "destroy", params)

            response = run_hook(descriptor.hooks, "before_delete", instance, context)
            if response is not None:
                self.session.rollback()
                return response

            soft_delete = descriptor.supports_soft_delete and not force
            if not soft_delete:
                dependents = self.dependents(descriptor, instance)
                if dependents:
                    raise DependencyConstraintError(MSG_DEPENDENTS, dependents)

            try:
                with transaction(self.session, "destroy", descriptor.type_name, item_id):
                    if soft_delete:
                        safcrud.log.debug(f"destroy {resource_id}: soft delete {item_id}")
                        instance._s_soft_delete()
                    else:
                        self.session.delete(instance)
                    self.session.flush()
            except sqla_exc.IntegrityError as exc:
                safcrud.log.debug(f"destroy {resource_id}: {exc}")
                raise DependencyConstraintError(MSG_DEPENDENTS)

            run_hook(descriptor.hooks, "after_delete", instance, context)
            send_event(entity_deleted, descriptor.model, instance)
            return ApiResponse.success(None, MSG_DELETED)
