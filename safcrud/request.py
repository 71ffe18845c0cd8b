"""
Request parsing

The query string of a collection or instance request is parsed once into a QueryParams object:

    filter[name]=widget&filter[price][gte]=10   => filters
    sort=-price,name                            => sorts
    page=2&per_page=20                          => pagination (validated by the paginator)
    include=category,reviews.author             => eager loaded and embedded relations
    fields=id,name                              => sparse fieldset
    avoid_duplicates, replace_relations,
    with_trashed, only_trashed, force           => boolean flags (1/0, true/false, yes/no, on/off)
"""
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple
from flask import Request
from .config import parse_bool
from .errors import InvalidRequestError
from .filters import FilterClause, SortClause, parse_filter_args, parse_sort_arg

BOOLEAN_ARGS = ("avoid_duplicates", "replace_relations", "with_trashed", "only_trashed", "force")


@dataclass(frozen=True)
class QueryParams:
    filters: Tuple[FilterClause, ...] = ()
    sorts: Tuple[SortClause, ...] = ()
    page: Optional[str] = None
    per_page: Optional[str] = None
    includes: Tuple[str, ...] = ()
    fields: Optional[Tuple[str, ...]] = None
    avoid_duplicates: bool = False
    replace_relations: bool = False
    with_trashed: bool = False
    only_trashed: bool = False
    force: bool = False


def _csv(value: Optional[str]) -> Tuple[str, ...]:
    return tuple(part.strip() for part in (value or "").split(",") if part.strip())


def parse_query_args(args) -> QueryParams:
    """
    :param args: werkzeug MultiDict (request.args)
    :return: QueryParams
    :raises InvalidFilterError: unknown filter operator
    :raises InvalidRequestError: invalid boolean flag
    """
    flags: Dict[str, Any] = {}
    for arg_name in BOOLEAN_ARGS:
        try:
            flags[arg_name] = parse_bool(args.get(arg_name))
        except ValueError:
            raise InvalidRequestError(f'Invalid boolean value for "{arg_name}"')

    fields = args.get("fields")
    return QueryParams(
        filters=tuple(parse_filter_args(args.lists())),
        sorts=tuple(parse_sort_arg(args.get("sort", ""))),
        page=args.get("page"),
        per_page=args.get("per_page"),
        includes=_csv(args.get("include")),
        fields=_csv(fields) if fields is not None else None,
        **flags,
    )


# pylint: disable=too-many-ancestors
class SafCrudRequest(Request):
    """
    Flask request class with the parsed safcrud query arguments
    """

    _query_params = None

    @property
    def query_params(self) -> QueryParams:
        if self._query_params is None:
            self._query_params = parse_query_args(self.args)
        return self._query_params

    def get_payload(self) -> Dict[str, Any]:
        """
        :return: the json body of the request
        :raises InvalidRequestError: the body isn't a json object
        """
        payload = self.get_json(force=True, silent=True)
        if not isinstance(payload, dict):
            raise InvalidRequestError("Invalid JSON payload: an object is expected")
        return payload
