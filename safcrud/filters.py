"""
Filtering and sorting of collection queries

query string syntax:
    filter[name]=widget                   equality
    filter[price][gte]=10                 operator
    filter[category.name][like]=tool      relation path => EXISTS subquery
    sort=-price,category.name             relation path => outer join
"""

import re
import datetime
from dataclasses import dataclass
from typing import Any, List, Sequence, Tuple
from sqlalchemy import Date, and_, func, not_
from sqlalchemy import inspect as sqla_inspect
from sqlalchemy.orm import aliased
import safcrud
from .attr_parse import parse_attr
from .base import column_map, primary_key_attrs
from .errors import InvalidFilterError
from .util import unique

ASC = "asc"
DESC = "desc"

OPERATORS = ("eq", "gt", "gte", "lt", "lte", "like", "in", "notIn", "between", "notBetween", "null", "notNull", "dateCompare")
# operators that take a list of values
LIST_OPERATORS = ("in", "notIn", "between", "notBetween")
# operators that ignore the value
UNARY_OPERATORS = ("null", "notNull")
DATE_COMPARE_OPERATORS = ("eq", "gt", "gte", "lt", "lte")

FILTER_ARG_RE = re.compile(r"^filter\[([^\[\]]+)\](?:\[([^\[\]]+)\])?$")


@dataclass(frozen=True)
class FilterClause:
    field_path: str
    operator: str
    value: Any = None

    @property
    def path(self) -> List[str]:
        return self.field_path.split(".")


@dataclass(frozen=True)
class SortClause:
    field_path: str
    direction: str = ASC

    @property
    def path(self) -> List[str]:
        return self.field_path.split(".")


def _split_values(values: Sequence[str]) -> List[str]:
    result = []
    for value in values:
        result += [v.strip() for v in str(value).split(",") if v.strip() != ""]
    return result


def parse_filter_args(items: Sequence[Tuple[str, Sequence[str]]]) -> List[FilterClause]:
    """
    :param items: (query arg name, list of values) pairs, e.g. request.args.lists()
    :return: ordered list of FilterClause, arguments that aren't filters are ignored
    """
    clauses = []
    for arg, values in items:
        match = FILTER_ARG_RE.match(arg)
        if not match:
            continue
        field_path, operator = match.group(1), match.group(2) or "eq"
        if operator not in OPERATORS:
            raise InvalidFilterError(f'Invalid filter operator "{operator}"', field=field_path)
        values = list(values) if isinstance(values, (list, tuple)) else [values]
        if operator in LIST_OPERATORS:
            value = _split_values(values)
            if operator in ("in", "notIn"):
                value = unique(value)
            clauses.append(FilterClause(field_path, operator, tuple(value)))
        else:
            for value in values:
                # repeated arguments on the same path are AND-ed
                clauses.append(FilterClause(field_path, operator, value))
    return clauses


def parse_sort_arg(sort_csv: str) -> List[SortClause]:
    """
    "-price,name" => [SortClause("price", "desc"), SortClause("name", "asc")]
    """
    clauses = []
    for sort_attr in (sort_csv or "").split(","):
        sort_attr = sort_attr.strip()
        if not sort_attr:
            continue
        if sort_attr.startswith("-"):
            clauses.append(SortClause(sort_attr[1:], DESC))
        else:
            clauses.append(SortClause(sort_attr.lstrip("+"), ASC))
    return clauses


def _coerce(column, value, clause: FilterClause):
    try:
        return parse_attr(column, value)
    except (ValueError, TypeError) as exc:
        raise InvalidFilterError(f'Invalid value for filter "{clause.field_path}": {exc}', field=clause.field_path)


def column_expression(attr, column, clause: FilterClause):
    """
    :param attr: instrumented attribute (possibly aliased)
    :param column: sqla column, used for value coercion
    :return: sqla boolean expression
    """
    operator = clause.operator
    value = clause.value

    if operator == "null":
        return attr.is_(None)
    if operator == "notNull":
        return attr.isnot(None)
    if operator == "like":
        value = str(value)
        pattern = value if ("%" in value or "_" in value) else f"%{value}%"
        return attr.like(pattern)
    if operator in ("in", "notIn"):
        values = [_coerce(column, v, clause) for v in value]
        if not values:
            raise InvalidFilterError(f'Filter "{clause.field_path}" requires at least one value', field=clause.field_path)
        return attr.in_(values) if operator == "in" else not_(attr.in_(values))
    if operator in ("between", "notBetween"):
        if len(value) != 2:
            raise InvalidFilterError(f'Filter "{clause.field_path}" requires exactly two values', field=clause.field_path)
        low, high = (_coerce(column, v, clause) for v in value)
        try:
            ordered = low <= high
        except TypeError:
            ordered = False
        if not ordered:
            raise InvalidFilterError(f'Filter "{clause.field_path}" requires low <= high', field=clause.field_path)
        return attr.between(low, high) if operator == "between" else not_(attr.between(low, high))
    if operator == "dateCompare":
        op, _, date_str = str(value).partition(",")
        op = op.strip()
        if op not in DATE_COMPARE_OPERATORS or not date_str:
            raise InvalidFilterError(f'dateCompare filter "{clause.field_path}" requires "<op>,<date>"', field=clause.field_path)
        try:
            date = datetime.date.fromisoformat(date_str.strip()[:10])
        except ValueError:
            raise InvalidFilterError(f'Invalid date "{date_str}" for filter "{clause.field_path}"', field=clause.field_path)
        return _compare(func.date(attr, type_=Date), op, date)

    value = _coerce(column, value, clause)
    if operator == "eq" and value is None:
        return attr.is_(None)
    return _compare(attr, operator, value)


def _compare(left, op: str, right):
    if op == "eq":
        return left == right
    if op == "gt":
        return left > right
    if op == "gte":
        return left >= right
    if op == "lt":
        return left < right
    return left <= right


def filter_expression(model, path: List[str], clause: FilterClause):
    """
    Translate the (relation) path of a clause into an expression,
    relations become correlated EXISTS subqueries: has() for to-one, any() for to-many
    """
    name = path[0]
    if len(path) == 1:
        columns = column_map(model)
        if name not in columns:
            raise InvalidFilterError(f'Invalid filter field "{clause.field_path}"', field=clause.field_path)
        return column_expression(getattr(model, name), columns[name], clause)

    relationship = sqla_inspect(model).relationships.get(name)
    if relationship is None or name in getattr(model, "exclude_rels", []):
        raise InvalidFilterError(f'Invalid filter relation "{name}" in "{clause.field_path}"', field=clause.field_path)
    inner = filter_expression(relationship.mapper.class_, path[1:], clause)
    rel_attr = getattr(model, name)
    return rel_attr.any(inner) if relationship.uselist else rel_attr.has(inner)


def apply_filters(query, model, clauses: Sequence[FilterClause]):
    """
    :return: query filtered by all clauses (AND)
    """
    expressions = [filter_expression(model, clause.path, clause) for clause in clauses]
    if expressions:
        query = query.filter(and_(*expressions))
    return query


def apply_sort(query, model, clauses: Sequence[SortClause]):
    """
    Order the query, the primary key (ascending) is always appended as tie-break

    Relation paths are outer joined, when a path crosses a to-many relationship the rows are grouped by
    primary key and ordered by min() (asc) or max() (desc) of the sort column, so every item occurs once
    """
    sort_attrs = []
    for clause in clauses:
        if clause.direction not in (ASC, DESC):
            raise InvalidFilterError(f'Invalid sort direction "{clause.direction}"', field=clause.field_path)
        path = clause.path
        entity = model
        current_model = model
        to_many = False
        for rel_name in path[:-1]:
            relationship = sqla_inspect(current_model).relationships.get(rel_name)
            if relationship is None or rel_name in getattr(current_model, "exclude_rels", []):
                raise InvalidFilterError(f'Invalid sort relation "{rel_name}" in "{clause.field_path}"', field=clause.field_path)
            target = relationship.mapper.class_
            alias = aliased(target)
            query = query.outerjoin(alias, getattr(entity, rel_name))
            to_many = to_many or relationship.uselist
            entity = alias
            current_model = target

        attr_name = path[-1]
        if attr_name not in column_map(current_model):
            raise InvalidFilterError(f'Invalid sort field "{clause.field_path}"', field=clause.field_path)
        sort_attrs.append((getattr(entity, attr_name), clause, len(path) > 1, to_many))
        safcrud.log.debug(f"sort {model.__name__} by {clause.field_path} {clause.direction}")

    # joined columns are aggregated as soon as the rows are grouped
    grouped = any(to_many for _, _, _, to_many in sort_attrs)
    order_by = []
    for attr, clause, joined, _ in sort_attrs:
        if grouped and joined:
            attr = func.min(attr) if clause.direction == ASC else func.max(attr)
        order_by.append(attr.asc() if clause.direction == ASC else attr.desc())

    pk_attrs = [getattr(model, pk) for pk in primary_key_attrs(model)]
    if grouped:
        query = query.group_by(*pk_attrs)
    order_by += [pk.asc() for pk in pk_attrs]
    return query.order_by(*order_by)
