import logging
import os
import sys
from flask import Flask
from .request import SafCrudRequest
from .json_encoder import SafCrudJSONProvider
import flask.app
from typing import Any, Dict, Union


class SAFCRUD:
    """This class holds the safcrud configuration and configures the Flask application
    :param app: a Flask application.
    :param LOGLEVEL: loglevel configuration variable, values from logging module (0: trace, .. 50: critical)
    """

    # Configuration settings are stored as class variables,
    # app.config values and keyword arguments passed to init_app override them
    ROUTE_PREFIX = "/api"
    DEFAULT_PER_PAGE = 15
    MAX_PER_PAGE = 100
    RELATION_BATCH_SIZE = 1000
    ENABLE_MONITORING = True
    SLOW_QUERY_THRESHOLD_MS = 1000
    MONITOR_TRACE_MEMORY = False  # process wide tracemalloc, started by Monitor.install
    DOCS_ENABLED = True
    DOCS_TITLE = "safcrud API"
    DOCS_VERSION = "1.0.0"
    LOGLEVEL = logging.WARNING
    PK_DELIMITER = "_"  # joins the values of composite primary keys in the url
    cors_domain = None
    # ids that can't be used as a resource identifier because the docs are served there
    RESERVED_RESOURCE_IDS = ("docs", "docs.json")
    #
    config = {}

    def __init__(self, app: flask.app.Flask, *args, **kwargs) -> None:
        """
        Constructor
        """
        self.app = app
        if app is not None:
            self.init_app(app, *args, **kwargs)

    def init_app(self, app: flask.app.Flask, **kwargs) -> None:
        """
        Application initialization:
        - request parsing and json encoding
        - configuration: app.config values and kwargs are stored as class variables
        """
        if not isinstance(app, Flask):  # pragma: no cover
            raise TypeError("'app' should be Flask.")

        app.request_class = SafCrudRequest
        app.json = SafCrudJSONProvider(app)
        app.url_map.strict_slashes = False

        if app.config.get("DEBUG", False):
            log.setLevel(logging.DEBUG)

        for conf_name, conf_val in kwargs.items():
            setattr(SAFCRUD, conf_name, conf_val)

        for conf_name, conf_val in app.config.items():
            setattr(SAFCRUD, conf_name, conf_val)

    @staticmethod
    def init_logging(loglevel: int = logging.WARNING) -> logging.Logger:
        """
        Specify the log format used in the webserver logs
        The webserver will catch stderr so we send everything there
        """
        log = logging.getLogger(__name__)
        if log.level == logging.NOTSET:
            handler = logging.StreamHandler(sys.stderr)
            formatter = logging.Formatter("[%(asctime)s] %(levelname)s: %(message)s")
            handler.setFormatter(formatter)
            log.setLevel(loglevel)
            log.addHandler(handler)
        return log


def dict_merge(dct: Dict[str, Any], merge_dct: Union[Dict[str, Any], Dict[int, Any]]) -> None:
    """Recursive dict merge used for creating the swagger spec.
    Inspired by :meth:``dict.update()``, instead of updating only
    top-level keys, dict_merge recurses down into dicts nested
    to an arbitrary depth, updating keys. The ``merge_dct`` is merged into ``dct``.
    :param dct: dict onto which the merge is executed
    :param merge_dct: dct merged into dct
    :return: None
    """
    for k in merge_dct:
        if k in dct and isinstance(dct[k], dict) and isinstance(merge_dct[k], dict):
            dict_merge(dct[k], merge_dct[k])
        else:
            # convert to string, for ex. http return codes
            dct[str(k)] = merge_dct[k]


#
# logging initialization
#
try:
    DEBUG = os.getenv("DEBUG", logging.WARNING)
    LOGLEVEL = int(DEBUG)
except ValueError:  # pragma: no cover
    print(f'Invalid LogLevel in DEBUG Environment Variable! "{DEBUG}"')
    LOGLEVEL = logging.INFO

log = SAFCRUD.init_logging(LOGLEVEL)
