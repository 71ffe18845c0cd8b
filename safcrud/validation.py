# Payload validation
#
# The rules for a model are expressed as a json schema generated from its columns:
# - the column type (cfr. SQLALCHEMY_SWAGGER2_TYPE)
# - nullable columns accept null
# - string lengths
# - non-nullable columns without default are required on create
# The `_s_rules` (or `_s_validation_rules`) of the model are merged into the generated schema
#
import re
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Optional
from jsonschema import Draft7Validator
from sqlalchemy import inspect as sqla_inspect
from .base import column_map, primary_key_attrs, swagger_type
from .errors import ValidationError

CREATE = "create"
UPDATE = "update"
ACTIONS = (CREATE, UPDATE)

_REQUIRED_RE = re.compile(r"^'(.+)' is a required property$")


def _is_required(column) -> bool:
    return not column.nullable and column.default is None and column.server_default is None


def _foreign_key_relations(model) -> Dict[str, str]:
    """
    :return: fk attribute name => name of the MANYTOONE relationship that sets it
    """
    columns = column_map(model)
    result = {}
    for rel in sqla_inspect(model).relationships:
        if rel.secondary is not None or not rel.local_columns:
            continue
        for attr_name, column in columns.items():
            if column.foreign_keys and any(column is local for local in rel.local_columns):
                result[attr_name] = rel.key
    return result


def build_ruleset(model, action: str) -> Dict[str, Any]:
    """
    Generate the json schema for the columns of `model`
    :param model: sqla model
    :param action: "create" or "update"
    :return: json schema
    """
    if action not in ACTIONS:
        raise ValueError(f"Invalid validation action {action}")

    properties = {}
    required = []
    pks = primary_key_attrs(model)
    soft_delete_column = getattr(model, "_s_soft_delete_column", None)
    client_ids = getattr(model, "allow_client_generated_ids", False)

    for attr_name, column in column_map(model).items():
        if attr_name == soft_delete_column or (attr_name in pks and not client_ids):
            continue
        prop = {}
        json_type = swagger_type(column)
        if json_type != "object":
            # json columns may hold anything
            prop["type"] = [json_type, "null"] if column.nullable else json_type
        length = getattr(column.type, "length", None)
        if json_type == "string" and isinstance(length, int):
            prop["maxLength"] = length
        properties[attr_name] = prop
        if action == CREATE and _is_required(column) and attr_name not in pks:
            required.append(attr_name)

    schema = {"type": "object", "properties": properties}
    if required:
        schema["required"] = required
    return schema


class RulesetProvider:
    """
    Callable returning the ruleset (json schema) of a model for an action,
    stored in the EntityDescriptor as `validation_rule_provider`
    """

    def __init__(self, model) -> None:
        self.model = model

    def __call__(self, action: str, instance: Any = None) -> Dict[str, Any]:
        schema = build_ruleset(self.model, action)
        rules_getter = getattr(self.model, "_s_validation_rules", None)
        custom_rules = rules_getter(action, instance) if callable(rules_getter) else getattr(self.model, "_s_rules", {})
        for field_name, fragment in (custom_rules or {}).items():
            if field_name == "required":
                if action == CREATE:
                    schema["required"] = list(dict.fromkeys(schema.get("required", []) + list(fragment)))
                continue
            prop = dict(schema["properties"].get(field_name, {}))
            prop.update(fragment)
            schema["properties"][field_name] = prop
        return schema


class PayloadValidator:
    """
    Validate request payloads against the ruleset of an entity
    """

    def errors(self, descriptor, action: str, payload: Dict[str, Any], instance: Any = None, exempt: Iterable[str] = ()) -> Dict[str, List[str]]:
        """
        :param exempt: fields that are not required, e.g. the foreign key set by the parent of a nested item
        :return: field name => list of error messages, empty if the payload is valid
        """
        schema = descriptor.validation_rule_provider(action, instance)
        # a foreign key is not required when the relationship is provided in the payload
        fk_relations = _foreign_key_relations(descriptor.model)
        required = [
            name for name in schema.get("required", []) if name not in exempt and (name not in fk_relations or fk_relations[name] not in payload)
        ]
        if required:
            schema["required"] = required
        else:
            schema.pop("required", None)

        details = defaultdict(list)
        for error in sorted(Draft7Validator(schema).iter_errors(payload), key=str):
            if error.validator == "required":
                match = _REQUIRED_RE.match(error.message)
                field_name = match.group(1) if match else "_payload"
            elif error.absolute_path:
                field_name = ".".join(str(elem) for elem in error.absolute_path)
            else:
                field_name = "_payload"
            details[field_name].append(error.message)
        return dict(details)

    def validate(
        self, descriptor, action: str, payload: Dict[str, Any], instance: Any = None, prefix: Optional[str] = None, exempt: Iterable[str] = ()
    ) -> None:
        """
        :param prefix: dotted path of a nested payload, prepended to the error keys
        :raises ValidationError: the payload doesn't satisfy the ruleset
        """
        errors = self.errors(descriptor, action, payload, instance, exempt)
        if not errors:
            return
        if prefix:
            errors = {f"{prefix}.{field_name}": messages for field_name, messages in errors.items()}
        raise ValidationError("Validation failed", details=errors)
