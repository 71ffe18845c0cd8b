import pytest
from werkzeug.datastructures import MultiDict

from safcrud.errors import InvalidFilterError, InvalidRequestError
from safcrud.filters import ASC, DESC, FilterClause, SortClause, parse_filter_args, parse_sort_arg
from safcrud.pagination import dedup, page_arguments
from safcrud.request import QueryParams, parse_query_args


def test_parse_filter_defaults_to_equality() -> None:
    clauses = parse_filter_args([("filter[name]", ["widget"]), ("page", ["2"])])

    assert clauses == [FilterClause("name", "eq", "widget")]


def test_parse_filter_list_operators_split_and_dedupe() -> None:
    clauses = parse_filter_args([("filter[id][in]", ["1,2", "2", "3"]), ("filter[price][between]", ["10, 20"])])

    assert clauses == [FilterClause("id", "in", ("1", "2", "3")), FilterClause("price", "between", ("10", "20"))]


def test_parse_filter_repeated_values_are_separate_clauses() -> None:
    clauses = parse_filter_args([("filter[category.name][like]", ["to", "ol"])])

    assert [clause.value for clause in clauses] == ["to", "ol"]
    assert clauses[0].path == ["category", "name"]


def test_parse_filter_unknown_operator() -> None:
    with pytest.raises(InvalidFilterError) as exc_info:
        parse_filter_args([("filter[name][approx]", ["x"])])

    assert exc_info.value.details == {"field": "name"}
    assert exc_info.value.status_code == 400


def test_parse_sort_arg() -> None:
    assert parse_sort_arg("-price, name,+sku,") == [SortClause("price", DESC), SortClause("name", ASC), SortClause("sku", ASC)]
    assert parse_sort_arg("") == []


def test_parse_query_args() -> None:
    args = MultiDict(
        [
            ("filter[price][gte]", "10"),
            ("sort", "-price"),
            ("page", "2"),
            ("per_page", "5"),
            ("include", "category, reviews"),
            ("fields", "name"),
            ("with_trashed", "on"),
            ("force", "0"),
        ]
    )

    params = parse_query_args(args)

    assert params.filters == (FilterClause("price", "gte", "10"),)
    assert params.sorts == (SortClause("price", DESC),)
    assert (params.page, params.per_page) == ("2", "5")
    assert params.includes == ("category", "reviews")
    assert params.fields == ("name",)
    assert params.with_trashed is True
    assert params.force is False
    assert params.avoid_duplicates is False


def test_parse_query_args_defaults() -> None:
    assert parse_query_args(MultiDict()) == QueryParams()


def test_parse_query_args_invalid_boolean() -> None:
    with pytest.raises(InvalidRequestError):
        parse_query_args(MultiDict([("avoid_duplicates", "perhaps")]))


@pytest.mark.parametrize(
    "page, per_page, expected",
    [
        (None, None, (1, 15)),
        ("0", "500", (1, 100)),
        ("3", "-1", (3, 1)),
        ("", "", (1, 15)),
    ],
)
def test_page_arguments(app, page, per_page, expected) -> None:
    assert page_arguments(page, per_page) == expected


def test_page_arguments_invalid(app) -> None:
    with pytest.raises(InvalidRequestError):
        page_arguments("one", None)


def test_dedup_keeps_first_occurrence() -> None:
    items = [(1, "a"), (2, "b"), (1, "c")]

    assert dedup(items, key=lambda item: item[0]) == [(1, "a"), (2, "b")]
