#
# Swagger 2.0 documentation of the exposed entities
#
# Every entity gets two paths, /{resource} (get, post) and /{resource}/{id} (get, put, patch, delete),
# and one definition generated from its columns and relationships.
# The model docstring may hold a yaml `description:`, it's used for the tag of the entity.
#
import inspect
from http import HTTPStatus
from typing import Any, Dict, List, Optional
import yaml
from flask_restful_swagger_2 import validate_definitions_object, validate_path_item_object
from flask_restful_swagger_2 import ValidationError as FRSValidationError
import safcrud
from .base import primary_key_attrs, swagger_format, swagger_type
from .errors import SystemValidationError
from .validation import CREATE, build_ruleset

DOC_DELIMITER = "---"  # text after the delimiter isn't parsed as yaml
ERROR_DEFINITION = "ErrorEnvelope"
PAGE_META_DEFINITION = "PageMeta"

ERROR_RESPONSES = {
    HTTPStatus.BAD_REQUEST.value: HTTPStatus.BAD_REQUEST.phrase,
    HTTPStatus.NOT_FOUND.value: HTTPStatus.NOT_FOUND.phrase,
    HTTPStatus.CONFLICT.value: HTTPStatus.CONFLICT.phrase,
    HTTPStatus.UNPROCESSABLE_ENTITY.value: HTTPStatus.UNPROCESSABLE_ENTITY.phrase,
    HTTPStatus.INTERNAL_SERVER_ERROR.value: HTTPStatus.INTERNAL_SERVER_ERROR.phrase,
}

ERROR_ENVELOPE = {
    "type": "object",
    "properties": {
        "success": {"type": "boolean"},
        "message": {"type": "string"},
        "error": {"type": "object", "properties": {"type": {"type": "string"}, "details": {"type": "object"}}},
    },
}

PAGE_META = {
    "type": "object",
    "properties": {
        "current_page": {"type": "integer"},
        "per_page": {"type": "integer"},
        "total": {"type": "integer"},
        "last_page": {"type": "integer"},
        "from": {"type": "integer"},
        "to": {"type": "integer"},
    },
}


def parse_object_doc(model) -> Dict[str, Any]:
    """
    Parse the yaml description from the model docstring
    """
    api_doc = {}
    # only the docstring of the class itself, not the inherited SAFCRUDBase docstring
    obj_doc = model.__dict__.get("__doc__")
    if not obj_doc:
        return api_doc
    raw_doc = inspect.cleandoc(obj_doc).split(DOC_DELIMITER)[0]

    try:
        yaml_doc = yaml.safe_load(raw_doc)
    except yaml.YAMLError as exc:
        safcrud.log.error(f"Failed to parse documentation {raw_doc} ({exc})")
        yaml_doc = {"description": raw_doc}
    except Exception:
        raise SystemValidationError("Failed to parse api doc")

    if isinstance(yaml_doc, dict):
        api_doc.update(yaml_doc)
    elif isinstance(yaml_doc, str):
        api_doc["description"] = yaml_doc
    return api_doc


def _ref(name: str) -> Dict[str, str]:
    return {"$ref": f"#/definitions/{name}"}


def _query_param(name: str, param_type: str = "string", description: str = "") -> Dict[str, Any]:
    return {"name": name, "in": "query", "type": param_type, "required": False, "description": description}


class DocumentationGenerator:
    """
    Generate the swagger document of the entities in a registry

    :param registry: EntityRegistry
    :param prefix: url prefix of the api, used as basePath
    :param title: info.title
    :param version: info.version
    :param host: optional host shown in the swagger ui
    """

    def __init__(self, registry, prefix: str = "", title: Optional[str] = None, version: Optional[str] = None, host: Optional[str] = None):
        self.registry = registry
        self.prefix = prefix or "/"
        self.title = title or "safcrud API"
        self.version = version or "1.0.0"
        self.host = host

    def generate(self) -> Dict[str, Any]:
        """
        :return: swagger 2.0 document (dict), entities that fail validation are logged and left out
        """
        doc = {
            "swagger": "2.0",
            "info": {"title": self.title, "version": str(self.version)},
            "basePath": self.prefix,
            "consumes": ["application/json"],
            "produces": ["application/json"],
            "paths": {},
            "definitions": {ERROR_DEFINITION: ERROR_ENVELOPE, PAGE_META_DEFINITION: PAGE_META},
            "tags": [],
        }
        if self.host:
            doc["host"] = self.host

        for descriptor in self.registry:
            try:
                definitions = {descriptor.type_name: self.definition(descriptor)}
                validate_definitions_object(definitions)
                paths = self.path_items(descriptor)
                for path_item in paths.values():
                    validate_path_item_object(path_item)
                tag = {"name": descriptor.resource_id}
                description = parse_object_doc(descriptor.model).get("description")
                if description:
                    tag["description"] = str(description)
            except (FRSValidationError, yaml.YAMLError, SystemValidationError) as exc:
                safcrud.log.error(f"Failed to generate documentation for {descriptor.type_name}: {exc}")
                continue
            except Exception as exc:
                # introspection errors of a single model don't break the document
                safcrud.log.exception(exc)
                safcrud.log.error(f"Failed to generate documentation for {descriptor.type_name}")
                continue

            doc["definitions"].update(definitions)
            doc["paths"].update(paths)
            doc["tags"].append(tag)

        return doc

    def definition(self, descriptor) -> Dict[str, Any]:
        """
        Schema of an entity: its columns and its relationships ($ref to the related definition)
        """
        model = descriptor.model
        pks = primary_key_attrs(model)
        client_ids = getattr(model, "allow_client_generated_ids", False)
        properties = {}
        for attr_name, column in descriptor.columns.items():
            prop = {"type": swagger_type(column)}
            column_format = swagger_format(column)
            if column_format:
                prop["format"] = column_format
            length = getattr(column.type, "length", None)
            if prop["type"] == "string" and isinstance(length, int):
                prop["maxLength"] = length
            if (attr_name in pks and not client_ids) or attr_name == descriptor.soft_delete_column:
                prop["readOnly"] = True
            if column.doc:
                prop["description"] = column.doc
            properties[attr_name] = prop

        for rel_name, relation in descriptor.relations.items():
            related = self.registry.for_model(relation.related_model)
            item_schema = _ref(related.type_name) if related is not None else {"type": "object"}
            if relation.to_many:
                properties[rel_name] = {"type": "array", "items": item_schema}
            else:
                properties[rel_name] = item_schema

        definition = {"type": "object", "properties": properties}
        required = build_ruleset(model, CREATE).get("required")
        if required:
            definition["required"] = required
        sample = model._s_sample_dict() if hasattr(model, "_s_sample_dict") else None
        if sample:
            definition["example"] = sample
        return definition

    def _responses(self, descriptor, status: int, many: bool = False, empty: bool = False) -> Dict[str, Any]:
        data = {"type": "array", "items": _ref(descriptor.type_name)} if many else _ref(descriptor.type_name)
        properties = {"success": {"type": "boolean"}, "message": {"type": "string"}}
        if not empty:
            properties["data"] = data
        if many:
            properties["meta"] = _ref(PAGE_META_DEFINITION)
        responses = {
            str(status): {"description": HTTPStatus(status).phrase, "schema": {"type": "object", "properties": properties}},
        }
        for error_status, description in ERROR_RESPONSES.items():
            responses[str(error_status)] = {"description": description, "schema": _ref(ERROR_DEFINITION)}
        return responses

    def _read_parameters(self, descriptor) -> List[Dict[str, Any]]:
        parameters = [
            _query_param("include", description="Comma separated list of relationships to embed, e.g. rel1,rel2.sub"),
            _query_param("fields", description="Comma separated list of attributes to return"),
        ]
        if descriptor.supports_soft_delete:
            parameters.append(_query_param("with_trashed", "boolean", "Include soft deleted items"))
        return parameters

    def _write_parameters(self, descriptor) -> List[Dict[str, Any]]:
        body = {"name": "payload", "in": "body", "required": True, "schema": _ref(descriptor.type_name)}
        return [
            body,
            _query_param("avoid_duplicates", "boolean", f"Update the existing item with the same {', '.join(descriptor.unique_fields) or 'unique fields'}"),
            _query_param("replace_relations", "boolean", "Remove the to-many children that are not in the payload"),
        ] + self._read_parameters(descriptor)

    def _collection_parameters(self, descriptor) -> List[Dict[str, Any]]:
        parameters = []
        for attr_name, column in descriptor.columns.items():
            parameters.append(
                _query_param(f"filter[{attr_name}]", description=f"Filter on {attr_name}, operators: filter[{attr_name}][op], op in eq, gt, gte, lt, lte, like, in, notIn, between, notBetween, null, notNull, dateCompare")
            )
        parameters += [
            _query_param("sort", description="Comma separated list of attributes, prefix with - for descending order, e.g. -price,category.name"),
            _query_param("page", "integer", "Page number, starting at 1"),
            _query_param("per_page", "integer", f"Page size, at most {safcrud.SAFCRUD.MAX_PER_PAGE}"),
        ]
        parameters += self._read_parameters(descriptor)
        if descriptor.supports_soft_delete:
            parameters.append(_query_param("only_trashed", "boolean", "Only return soft deleted items"))
        return parameters

    def path_items(self, descriptor) -> Dict[str, Dict[str, Any]]:
        """
        :return: path => swagger path item of the collection and instance urls
        """
        resource_id = descriptor.resource_id
        type_name = descriptor.type_name
        tags = [resource_id]

        collection = {
            "get": {
                "tags": tags,
                "summary": f"Retrieve a page of {type_name} items",
                "operationId": f"index{type_name}",
                "parameters": self._collection_parameters(descriptor),
                "responses": self._responses(descriptor, HTTPStatus.OK.value, many=True),
            },
            "post": {
                "tags": tags,
                "summary": f"Create a {type_name} item with its relations",
                "operationId": f"store{type_name}",
                "parameters": self._write_parameters(descriptor),
                "responses": self._responses(descriptor, HTTPStatus.CREATED.value),
            },
        }

        delete_parameters = []
        if descriptor.supports_soft_delete:
            delete_parameters.append(_query_param("force", "boolean", "Delete the item instead of marking it as deleted"))

        instance = {
            "parameters": [{"name": "id", "in": "path", "required": True, "type": "string", "description": f"{type_name} id"}],
            "get": {
                "tags": tags,
                "summary": f"Retrieve a {type_name} item",
                "operationId": f"show{type_name}",
                "parameters": self._read_parameters(descriptor),
                "responses": self._responses(descriptor, HTTPStatus.OK.value),
            },
            "put": {
                "tags": tags,
                "summary": f"Update a {type_name} item",
                "operationId": f"update{type_name}",
                "parameters": self._write_parameters(descriptor),
                "responses": self._responses(descriptor, HTTPStatus.OK.value),
            },
            "patch": {
                "tags": tags,
                "summary": f"Update a {type_name} item",
                "operationId": f"patch{type_name}",
                "parameters": self._write_parameters(descriptor),
                "responses": self._responses(descriptor, HTTPStatus.OK.value),
            },
            "delete": {
                "tags": tags,
                "summary": f"Delete a {type_name} item",
                "operationId": f"destroy{type_name}",
                "parameters": delete_parameters,
                "responses": self._responses(descriptor, HTTPStatus.OK.value, empty=True),
            },
        }
        return {f"/{resource_id}": collection, f"/{resource_id}/{{id}}": instance}
