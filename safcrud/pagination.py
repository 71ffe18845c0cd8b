# Pagination of collection queries
#
# Response formatting follows filter -> sort -> paginate
# The page meta mirrors what clients of length-aware paginators expect:
# current_page, per_page, total, last_page, from, to
#
import math
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional
import sqlalchemy
import safcrud
from .config import get_config
from .errors import GenericError, InvalidRequestError


@dataclass
class Page:
    items: List[Any] = field(default_factory=list)
    total: int = 0
    per_page: int = 15
    current_page: int = 1
    last_page: int = 1
    from_: Optional[int] = None
    to: Optional[int] = None

    @property
    def meta(self) -> Dict[str, Any]:
        return {
            "current_page": self.current_page,
            "per_page": self.per_page,
            "total": self.total,
            "last_page": self.last_page,
            "from": self.from_,
            "to": self.to,
        }


def page_arguments(page: Any = None, per_page: Any = None):
    """
    Validate the page arguments
    :return: page number (>= 1), page size (1 .. MAX_PER_PAGE)
    """
    try:
        page = int(page) if page not in (None, "") else 1
        per_page = int(per_page) if per_page not in (None, "") else int(get_config("DEFAULT_PER_PAGE"))
    except (TypeError, ValueError):
        raise InvalidRequestError("Pagination Value Error")

    max_per_page = int(get_config("MAX_PER_PAGE"))
    if page < 1:
        page = 1
    if per_page < 1:
        per_page = 1
    if per_page > max_per_page:
        per_page = max_per_page
    return page, per_page


def dedup(items: List[Any], key: Callable[[Any], Any]) -> List[Any]:
    """
    Remove items with a duplicate key, keeping the first occurrence
    """
    seen = set()
    result = []
    for item in items:
        item_key = key(item)
        if item_key in seen:
            continue
        seen.add(item_key)
        result.append(item)
    return result


def paginate(query, page: Any = None, per_page: Any = None, key: Optional[Callable[[Any], Any]] = None) -> Page:
    """
    this is where the query is executed

    :param query: sqla query (filtered and sorted)
    :param page: page number, starting at 1
    :param per_page: number of items per page
    :param key: primary key getter used to de-duplicate the page items
    :return: Page
    """
    page, per_page = page_arguments(page, per_page)

    # Counting may be slow for large tables, the ordering doesn't matter for the count
    total = query.order_by(None).count()
    last_page = max(int(math.ceil(total / per_page)), 1)
    offset = (page - 1) * per_page

    try:
        items = query.offset(offset).limit(per_page).all()
    except OverflowError:
        raise InvalidRequestError("Pagination Overflow Error")
    except sqlalchemy.exc.CompileError as exc:  # pragma: no cover
        safcrud.log.warning(f"{exc} / Add a valid sort= URL parameter")
        raise GenericError(f"{exc}")

    if key is not None:
        items = dedup(items, key)

    return Page(
        items=items,
        total=total,
        per_page=per_page,
        current_page=page,
        last_page=last_page,
        from_=offset + 1 if items else None,
        to=offset + len(items) if items else None,
    )
