import datetime
import decimal
import safcrud
import sqlalchemy
from .config import parse_bool

DATETIME_FORMATS = ("%Y-%m-%d %H:%M:%S.%f", "%Y-%m-%d %H:%M:%S", "%Y-%m-%dT%H:%M:%S.%f", "%Y-%m-%dT%H:%M:%S", "%Y-%m-%d")
TIME_FORMATS = ("%H:%M:%S.%f", "%H:%M:%S", "%H:%M")


def _parse_datetime(value):
    if isinstance(value, datetime.datetime):
        return value
    date_str = str(value).strip()
    if date_str.endswith("Z"):
        date_str = date_str[:-1]
    try:
        return datetime.datetime.fromisoformat(date_str)
    except ValueError:
        pass
    for fmt in DATETIME_FORMATS:
        try:
            return datetime.datetime.strptime(date_str, fmt)
        except ValueError:
            continue
    raise ValueError(f'Invalid datetime "{value}"')


def _parse_time(value):
    if isinstance(value, datetime.time):
        return value
    for fmt in TIME_FORMATS:
        try:
            return datetime.datetime.strptime(str(value), fmt).time()
        except ValueError:
            continue
    raise ValueError(f'Invalid time "{value}"')


def parse_attr(column, attr_val):
    """
    Parse the supplied `attr_val` so it can be saved in the SQLAlchemy `column`
    or compared with it in a filter expression

    :param column: SQLAlchemy column
    :param attr_val: request value (json or query string)
    :return: processed value
    :raises ValueError: when the value can't be converted
    """
    if attr_val is None:
        return attr_val

    try:
        python_type = column.type.python_type
    except NotImplementedError as exc:
        # custom column types: the developer should know how to handle these
        safcrud.log.debug(exc)
        return attr_val

    # skip type coercion on JSON columns, since they could be anything
    if isinstance(column.type, sqlalchemy.types.JSON):
        return attr_val

    if python_type is datetime.datetime:
        return _parse_datetime(attr_val)
    if python_type is datetime.date:
        if isinstance(attr_val, datetime.datetime):
            return attr_val.date()
        if isinstance(attr_val, datetime.date):
            return attr_val
        return _parse_datetime(attr_val).date()
    if python_type is datetime.time:
        return _parse_time(attr_val)
    if python_type is bool:
        return parse_bool(attr_val)
    if python_type is decimal.Decimal:
        try:
            return decimal.Decimal(str(attr_val))
        except decimal.InvalidOperation:
            raise ValueError(f'Invalid decimal "{attr_val}"')
    if python_type is int and isinstance(attr_val, float) and not attr_val.is_integer():
        raise ValueError(f'Invalid integer "{attr_val}"')
    if python_type in (int, float, str):
        try:
            return python_type(attr_val)
        except (TypeError, ValueError):
            raise ValueError(f'Invalid {python_type.__name__} "{attr_val}"')

    return attr_val
