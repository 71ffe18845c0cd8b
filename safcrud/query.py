"""
Query building for the exposed entities: filter -> sort -> include
"""

from typing import Any, Dict, Iterable, List, Optional, Sequence
from sqlalchemy import inspect as sqla_inspect
from sqlalchemy.orm import selectinload
import safcrud
from .attr_parse import parse_attr
from .base import column_map, parse_include_tree
from .errors import InvalidFilterError
from .filters import FilterClause, SortClause, apply_filters, apply_sort
from .pagination import Page, paginate

# relationships loaded with these strategies can't take loader options
_NO_OPTIONS_LAZY = ("dynamic", "write_only", "noload", "raise", "raise_on_sql")


def soft_delete_criteria(query, descriptor, with_trashed: bool = False, only_trashed: bool = False):
    """
    Exclude the soft deleted items, unless requested otherwise
    """
    if not descriptor.supports_soft_delete:
        return query
    column = getattr(descriptor.model, descriptor.soft_delete_column)
    if only_trashed:
        return query.filter(column.isnot(None))
    if with_trashed:
        return query
    return query.filter(column.is_(None))


class QueryBuilder:
    """
    Build and execute the queries of the resource controller
    """

    def __init__(self, session) -> None:
        self.session = session

    def base_query(self, descriptor, with_trashed: bool = False, only_trashed: bool = False):
        query = self.session.query(descriptor.model)
        return soft_delete_criteria(query, descriptor, with_trashed, only_trashed)

    def build_query(
        self,
        descriptor,
        filters: Sequence[FilterClause] = (),
        sorts: Sequence[SortClause] = (),
        with_trashed: bool = False,
        only_trashed: bool = False,
        includes: Iterable[str] = (),
    ):
        """
        :return: sqla query object, filtered, sorted and with the include loader options applied
        """
        query = self.base_query(descriptor, with_trashed, only_trashed)
        query = apply_filters(query, descriptor.model, filters)
        query = apply_sort(query, descriptor.model, sorts)
        return self.apply_includes(query, descriptor.model, includes)

    def apply_includes(self, query, model, includes: Iterable[str]):
        """
        `include=rel1,rel2.sub` => selectinload options
        See: https://docs.sqlalchemy.org/en/20/orm/queryguide/relationships.html

        :raises InvalidFilterError: unknown relationship
        """
        for include in includes:
            current_cls = model
            options = None
            for inc_rel_name in include.split("."):
                relationship = sqla_inspect(current_cls).relationships.get(inc_rel_name)
                if relationship is None or inc_rel_name in getattr(current_cls, "exclude_rels", []):
                    raise InvalidFilterError(f'Invalid include "{include}"', field=include)
                if relationship.lazy in _NO_OPTIONS_LAZY:
                    # serialized without eager loading
                    options = None
                    break
                inc_rel = getattr(current_cls, inc_rel_name)
                options = options.selectinload(inc_rel) if options is not None else selectinload(inc_rel)
                current_cls = relationship.mapper.class_
            if options is not None:
                query = query.options(options)
        return query

    def validate_includes(self, model, includes: Iterable[str]) -> Dict[str, Dict]:
        """
        :return: include tree, cfr. parse_include_tree
        :raises InvalidFilterError: unknown relationship
        """
        for include in includes:
            current_cls = model
            for inc_rel_name in include.split("."):
                relationship = sqla_inspect(current_cls).relationships.get(inc_rel_name)
                if relationship is None or inc_rel_name in getattr(current_cls, "exclude_rels", []):
                    raise InvalidFilterError(f'Invalid include "{include}"', field=include)
                current_cls = relationship.mapper.class_
        return parse_include_tree(includes)

    def validate_fields(self, model, fields: Optional[Iterable[str]]) -> Optional[List[str]]:
        if not fields:
            return None
        columns = column_map(model)
        for field_name in fields:
            if field_name not in columns:
                raise InvalidFilterError(f'Invalid field "{field_name}"', field=field_name)
        return list(fields)

    def paginate(self, query, descriptor, page: Any = None, per_page: Any = None) -> Page:
        return paginate(query, page, per_page, key=lambda item: tuple(getattr(item, pk) for pk in descriptor.primary_keys))

    def get_instance(self, descriptor, item_id: Any, with_trashed: bool = False, includes: Iterable[str] = ()):
        """
        :return: the instance with the given url id or None
        """
        criteria = descriptor.split_id(item_id)
        if not criteria:
            return None
        columns = column_map(descriptor.model)
        try:
            criteria = {name: parse_attr(columns[name], value) for name, value in criteria.items()}
        except (TypeError, ValueError):
            safcrud.log.debug(f"Invalid id {item_id} for {descriptor.type_name}")
            return None
        query = self.base_query(descriptor, with_trashed=with_trashed)
        query = self.apply_includes(query, descriptor.model, includes)
        return query.filter_by(**criteria).one_or_none()
