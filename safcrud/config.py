# Configuration settings should be set in app.config
# The SAFCRUD class variables hold the defaults, environment variables are used as a last resort
import os
import logging
from flask import current_app
import safcrud
from typing import Any, Optional

# options that are cast to int/bool when they are read from the environment
_INT_OPTIONS = ("DEFAULT_PER_PAGE", "MAX_PER_PAGE", "RELATION_BATCH_SIZE", "SLOW_QUERY_THRESHOLD_MS")
_BOOL_OPTIONS = ("ENABLE_MONITORING", "DOCS_ENABLED", "MONITOR_TRACE_MEMORY")
TRUE_VALUES = ("1", "true", "yes", "on")
FALSE_VALUES = ("0", "false", "no", "off", "")


def get_config(option: str) -> Optional[Any]:
    """Retrieve a configuration parameter
    :param option: configuration parameter
    :return: configuration value

    Lookup order: flask app config, SAFCRUD class variable, environment variable
    """
    try:
        result = current_app.config[option]
    except (KeyError, RuntimeError):
        result = getattr(safcrud.SAFCRUD, option, None)

    if result is not None:
        return result

    result = os.environ.get(option, None)
    if result is None:
        return None
    if option in _INT_OPTIONS:
        return int(result)
    if option in _BOOL_OPTIONS:
        return parse_bool(result)
    return result


def parse_bool(value: Any, default: bool = False) -> bool:
    """
    Parse a boolean query string argument, env variable or json value
    :param value: value to parse
    :param default: returned when value is None
    """
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    value = str(value).strip().lower()
    if value in TRUE_VALUES:
        return True
    if value in FALSE_VALUES:
        return False
    raise ValueError(f"Invalid boolean value '{value}'")


def is_debug() -> bool:
    """
    We use the loglevel to check whether we're running in debug mode
    :return: whether the app is in debug mode
    :rtype: Boolean
    """
    return safcrud.log.getEffectiveLevel() < logging.INFO
