# flask_restful API subclass exposing the generic CRUD routes
#
# {prefix}/<resource>             GET (index), POST (store)
# {prefix}/<resource>/<item_id>   GET (show), PUT/PATCH (update), DELETE (destroy)
# {prefix}/docs.json              swagger document
# {prefix}/docs                   swagger ui
#
# The resource classes are generic: the resource id in the url is resolved by the registry
# for every request, the registry is rebuilt (and swapped) when objects are exposed.
#
from functools import wraps
from typing import Any, Callable, Dict, Optional
import werkzeug
import yaml
from flask import Flask, Response, jsonify, make_response, request
from flask_restful import Api, Resource
from flask_restful.utils import cors
from flask_swagger_ui import get_swaggerui_blueprint
import safcrud
from .cli import safcrud_cli
from .config import get_config
from .controller import ResourceController
from .errors import ApiError, GenericError, SystemValidationError
from .monitor import Monitor
from .persistence import RelationPersister
from .registry import EntityRegistry
from .response import ApiResponse
from .swagger_doc import DocumentationGenerator

COLLECTION_URL = "/<string:resource>"
INSTANCE_URL = "/<string:resource>/<string:item_id>"
DOCS_URL = "/docs"
DOCS_JSON_URL = "/docs.json"


class SafCrudApi(Api):
    """
    Subclass of the flask_restful Api class where we add the expose_object method:
    exposed objects are registered in the EntityRegistry and served by the generic resources

    :param app: Flask app
    :param db: Flask-SQLAlchemy instance, defaults to app.extensions["sqlalchemy"]
    :param session: sqlalchemy session, used instead of db.session
    :param prefix: url prefix, defaults to the ROUTE_PREFIX config
    :param custom_swagger: swagger spec merged into the generated document
    :param monitor: Monitor, by default one is installed when ENABLE_MONITORING is set
    :param kwargs: configuration overrides, cfr. SAFCRUD
    """

    def __init__(
        self,
        app: Flask,
        db=None,
        session=None,
        prefix: Optional[str] = None,
        custom_swagger: Optional[Dict[str, Any]] = None,
        monitor: Optional[Monitor] = None,
        swaggerui_blueprint: bool = True,
        **kwargs,
    ) -> None:
        safcrud.SAFCRUD(app, **kwargs)
        if db is None and session is None:
            db = app.extensions.get("sqlalchemy")
        if db is None and session is None:
            raise SystemValidationError("No database configured: pass a Flask-SQLAlchemy db or a session")

        self.db = db
        self._session = session
        self._custom_swagger = custom_swagger or {}
        self._exposed = []
        self._hooks = {}
        self.registry = EntityRegistry()

        with app.app_context():
            if prefix is None:
                prefix = get_config("ROUTE_PREFIX") or ""
            docs_enabled = get_config("DOCS_ENABLED")
            if monitor is None and get_config("ENABLE_MONITORING"):
                engine = db.engine if db is not None else session.get_bind()
                monitor = Monitor(engine).install()
        self.monitor = monitor

        super().__init__(app, prefix=prefix)
        self.add_resource(make_resource(CollectionResource, self), COLLECTION_URL, endpoint="safcrud_collection", methods=["GET", "POST"])
        self.add_resource(
            make_resource(InstanceResource, self), INSTANCE_URL, endpoint="safcrud_instance", methods=["GET", "PUT", "PATCH", "DELETE"]
        )
        if docs_enabled:
            self.add_resource(make_resource(DocsResource, self), DOCS_JSON_URL, endpoint="safcrud_docs")
            if swaggerui_blueprint:
                blueprint = get_swaggerui_blueprint(
                    f"{prefix}{DOCS_URL}", f"{prefix}{DOCS_JSON_URL}", config={"docExpansion": "none", "defaultModelsExpandDepth": -1}
                )
                app.register_blueprint(blueprint)

        app.extensions["safcrud"] = self
        app.cli.add_command(safcrud_cli)

    @property
    def session(self):
        return self._session if self._session is not None else self.db.session

    def expose_object(self, model, hooks=None) -> None:
        """This method registers a SAFCRUDBase subclass in the api
        :param model: SAFCRUDBase subclass that we would like to expose
        :param hooks: optional ModelHooks (class or instance), overrides the model `_s_hooks`

        the registry is rebuilt, requests in progress keep using the previous one
        """
        if model not in self._exposed:
            self._exposed.append(model)
        if hooks is not None:
            self._hooks[model] = hooks
        self.registry = self.registry.rebuild(self._exposed, self._hooks)
        descriptor = self.registry.for_model(model)
        if descriptor is not None:
            safcrud.log.info(f"Exposing {model.__name__} on {self.prefix}/{descriptor.resource_id}")

    def expose(self, *models) -> None:
        for model in models:
            self.expose_object(model)

    def get_controller(self) -> ResourceController:
        """
        :return: ResourceController using the session of the current request
        """
        session = self.session
        persister = RelationPersister(session, self.registry, batch_size=get_config("RELATION_BATCH_SIZE"))
        return ResourceController(self.registry, session, persister=persister, monitor=self.monitor)

    def dispatch(self, resource_id: str, action: str, *args) -> Any:
        """
        Call the controller action, wrapped in the custom decorators of the requested model
        """
        descriptor = self.registry.resolve(resource_id)
        handler = getattr(self.get_controller(), action)
        for custom_decorator in getattr(descriptor.model, "custom_decorators", []):
            handler = custom_decorator(handler)
        return handler(resource_id, *args)

    def rollback(self) -> None:
        try:
            self.session.rollback()
        except Exception as exc:  # pragma: no cover
            safcrud.log.exception(exc)

    def swagger_doc(self, host: Optional[str] = None) -> Dict[str, Any]:
        """
        :return: the generated swagger document, merged with the custom_swagger
        """
        generator = DocumentationGenerator(
            self.registry, prefix=self.prefix, title=get_config("DOCS_TITLE"), version=get_config("DOCS_VERSION"), host=host
        )
        doc = generator.generate()
        safcrud.dict_merge(doc, self._custom_swagger)
        return doc


def make_resource(resource_class, safcrud_api: SafCrudApi):
    """
    Create a resource class bound to the api and decorate it
    """
    properties = {"safcrud_api": safcrud_api}
    return api_decorator(type(f"{resource_class.__name__}_API", (resource_class,), properties))


def api_decorator(cls):
    """Decorator for the API views:
        - add generic exception handling
        - add cors

    :param cls: The class that will be decorated (e.g. CollectionResource)
    :return: decorated class
    """
    cors_domain = get_config("cors_domain")
    for method_name in ["get", "post", "put", "patch", "delete"]:
        method = getattr(cls, method_name, None)
        if not method:
            continue
        decorated_method = http_method_decorator(method)
        if cors_domain is not None:
            decorated_method = cors.crossdomain(origin=cors_domain)(decorated_method)
        setattr(cls, method_name, decorated_method)
    return cls


def http_method_decorator(fun: Callable) -> Callable:
    """Decorator for the supported HTTP methods (get, post, put, patch, delete)
    - serialize the ApiResponse returned by the controller
    - convert all exceptions to an error envelope
    - roll back the session on every failure path

    :param fun:
    :return: wrapped fun
    """

    @wraps(fun)
    def method_wrapper(*args, **kwargs):
        """Wrap the method and perform error handling
        :param *args:
        :param **kwargs:
        :return: flask response
        """
        try:
            result = fun(*args, **kwargs)
            if isinstance(result, ApiResponse):
                return make_response(jsonify(result.body), result.status)
            return result

        except ApiError as exc:
            # this also catches safcrud.errors.NotFoundError
            error = exc

        except werkzeug.exceptions.HTTPException as exc:
            # e.g. raised by flask.abort in a custom decorator
            safcrud.log.error(f"{exc.code}: {exc.description}")
            error = ApiError(exc.description, exc.code)
            error.error_type = type(exc).__name__

        except Exception as exc:
            safcrud.log.exception(exc)
            error = GenericError(exc)

        args[0].safcrud_api.rollback()
        return make_response(jsonify(error.to_envelope()), error.status_code)

    return method_wrapper


class CollectionResource(Resource):
    """
    {prefix}/<resource>
    """

    safcrud_api: Optional[SafCrudApi] = None

    def get(self, resource: str):
        return self.safcrud_api.dispatch(resource, "index", request.query_params)

    def post(self, resource: str):
        return self.safcrud_api.dispatch(resource, "store", request.get_payload(), request.query_params)


class InstanceResource(Resource):
    """
    {prefix}/<resource>/<item_id>
    """

    safcrud_api: Optional[SafCrudApi] = None

    def get(self, resource: str, item_id: str):
        return self.safcrud_api.dispatch(resource, "show", item_id, request.query_params)

    def put(self, resource: str, item_id: str):
        return self.safcrud_api.dispatch(resource, "update", item_id, request.get_payload(), request.query_params)

    def patch(self, resource: str, item_id: str):
        return self.safcrud_api.dispatch(resource, "update", item_id, request.get_payload(), request.query_params)

    def delete(self, resource: str, item_id: str):
        return self.safcrud_api.dispatch(resource, "destroy", item_id, request.query_params)


class DocsResource(Resource):
    """
    {prefix}/docs.json, add ?yaml=1 for a yaml document
    """

    safcrud_api: Optional[SafCrudApi] = None

    def get(self):
        doc = self.safcrud_api.swagger_doc(host=request.host)
        if request.args.get("yaml"):
            return Response(yaml.safe_dump(doc, sort_keys=False), content_type="text/yaml")
        return jsonify(doc)
