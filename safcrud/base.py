# base.py: implements the SAFCRUDBase SQLAlchemy model mixin and model introspection helpers
#
# pylint: disable=no-self-argument,no-member,line-too-long,protected-access
#
"""
SAFCRUDBase class customizable attributes, override these to customize how a model is exposed

_s_expose:
Type: bool
Description: Indicates whether this class may be registered in the api.

_s_resource_id:
Type: Optional[str]
Description: Resource identifier used in the url, by default the kebab-case plural of the class name.

_s_unique_fields:
Type: tuple
Description: Attribute names used to find duplicates when `avoid_duplicates` is requested.

_s_rules:
Type: dict
Description: json schema fragments merged into the generated validation rules, e.g. {"price": {"minimum": 0}}

_s_soft_delete_column:
Type: Optional[str]
Description: Name of the nullable datetime column that marks an item as deleted.

_s_hooks:
Type: Optional[ModelHooks]
Description: Lifecycle hooks (class or instance) invoked by the resource controller.

_s_default_includes:
Type: tuple
Description: Relationships embedded in the response when no `include` argument is given.

custom_decorators:
Type: list
Description: Decorators applied to the http methods when this model is requested.
"""
import datetime
from typing import Any, Dict, Iterable, List, Optional
from sqlalchemy import inspect as sqla_inspect
from sqlalchemy.orm import RelationshipProperty
from sqlalchemy.sql.schema import Column
import safcrud
from .util import classproperty

#
# Map SQLA types to swagger2 json types
# json supports only a couple of basic data types
# If a type isn't found in the table, "string" will be used
#
SQLALCHEMY_SWAGGER2_TYPE = {
    "INTEGER": "integer",
    "SMALLINT": "integer",
    "NUMERIC": "number",
    "DECIMAL": "number",
    "VARCHAR": "string",
    "TEXT": "string",
    "DATE": "string",
    "BOOLEAN": "boolean",
    "BLOB": "string",
    "BYTEA": "string",
    "BINARY": "string",
    "VARBINARY": "string",
    "FLOAT": "number",
    "REAL": "number",
    "DOUBLE": "number",
    "DOUBLE_PRECISION": "number",
    "DATETIME": "string",
    "BIGINT": "integer",
    "ENUM": "string",
    "INTERVAL": "string",
    "CHAR": "string",
    "TIMESTAMP": "string",
    "TINYINT": "integer",
    "MEDIUMINT": "integer",
    "NVARCHAR": "string",
    "YEAR": "integer",
    "SET": "string",
    "LONGBLOB": "string",
    "TINYTEXT": "string",
    "LONGTEXT": "string",
    "MEDIUMTEXT": "string",
    "UUID": "string",
    "TIME": "string",
    "JSON": "object",
}
# swagger "format" of the string types
SQLALCHEMY_SWAGGER2_FORMAT = {"DATE": "date", "DATETIME": "date-time", "TIMESTAMP": "date-time", "UUID": "uuid"}


def swagger_type(column: Column) -> str:
    """
    :param column: sqla column
    :return: the swagger2 (and json schema) type of the column
    """
    try:
        type_name = column.type.compile()
    except Exception:
        type_name = type(column.type).__name__
    type_name = str(type_name).split("(")[0].upper()
    if type_name not in SQLALCHEMY_SWAGGER2_TYPE:
        type_name = type(column.type).__name__.upper()
    return SQLALCHEMY_SWAGGER2_TYPE.get(type_name, "string")


def swagger_format(column: Column) -> Optional[str]:
    type_name = type(column.type).__name__.upper()
    return SQLALCHEMY_SWAGGER2_FORMAT.get(type_name)


def column_map(model) -> Dict[str, Column]:
    """
    :param model: sqla model class
    :return: attribute name => column, for the columns exposed by the api
    """
    exclude = getattr(model, "exclude_attrs", [])
    mapper = sqla_inspect(model)
    return {prop.key: prop.columns[0] for prop in mapper.column_attrs if prop.key not in exclude}


def relationship_map(model) -> Dict[str, RelationshipProperty]:
    """
    :param model: sqla model class
    :return: relationship name => relationship, in declaration order
    """
    exclude = getattr(model, "exclude_rels", [])
    mapper = sqla_inspect(model)
    return {rel.key: rel for rel in mapper.relationships if rel.key not in exclude}


def primary_key_attrs(model) -> List[str]:
    """
    :return: the attribute names of the primary key columns
    """
    mapper = sqla_inspect(model)
    return [mapper.get_property_by_column(col).key for col in mapper.primary_key]


def is_trashed(instance) -> bool:
    column = getattr(type(instance), "_s_soft_delete_column", None)
    return bool(column) and getattr(instance, column, None) is not None


def parse_include_tree(includes: Iterable[str]) -> Dict[str, Dict]:
    """
    ["tags", "reviews.author"] => {"tags": {}, "reviews": {"author": {}}}
    """
    tree = {}
    for include in includes:
        node = tree
        for rel_name in include.split("."):
            if rel_name:
                node = node.setdefault(rel_name, {})
    return tree


def _pk_sort_key(instance):
    return tuple((value is None, value) for value in (getattr(instance, attr) for attr in primary_key_attrs(type(instance))))


def encode_instance(instance, fields: Optional[Iterable[str]] = None, includes: Optional[Dict[str, Dict]] = None) -> Dict[str, Any]:
    """
    Serialize a model instance to a dict of attribute values, the included relationships are serialized recursively
    to-many relationships are ordered by primary key so that the output is deterministic

    :param instance: sqla model instance
    :param fields: sparse fieldset: the attribute names to serialize (the primary key is always kept)
    :param includes: include tree, cfr. parse_include_tree
    :return: dict
    """
    model = type(instance)
    columns = column_map(model)
    if fields:
        keep = set(fields) | set(primary_key_attrs(model))
        columns = {name: col for name, col in columns.items() if name in keep}

    result = {name: getattr(instance, name) for name in columns}

    for rel_name, sub_tree in (includes or {}).items():
        related = getattr(instance, rel_name)
        if related is None:
            result[rel_name] = None
        elif isinstance(related, (list, set, tuple)) or hasattr(related, "all"):
            if hasattr(related, "all"):
                # lazy="dynamic" relationship
                related = related.all()
            items = sorted((item for item in related if not is_trashed(item)), key=_pk_sort_key)
            result[rel_name] = [encode_instance(item, includes=sub_tree) for item in items]
        elif is_trashed(related):
            result[rel_name] = None
        else:
            result[rel_name] = encode_instance(related, includes=sub_tree)

    return result


#
# SAFCRUDBase mixin
#
class SAFCRUDBase:
    """This SQLAlchemy mixin marks a model class as exposable by the safcrud api
    The api only registers classes that inherit from it, the class attributes
    documented in the module docstring customize the generated endpoints

    example:

        class Product(SAFCRUDBase, db.Model):
            _s_unique_fields = ("sku",)
            _s_rules = {"price": {"minimum": 0}}
    """

    _s_expose = True
    _s_resource_id = None
    _s_unique_fields = ()
    _s_rules = {}
    _s_soft_delete_column = None
    _s_hooks = None
    _s_default_includes = ()

    allow_client_generated_ids = False  # Indicates whether the client may set the primary key
    exclude_attrs = []  # list of attribute names that should not be serialized
    exclude_rels = []  # list of relationship names that should not be serialized
    custom_decorators = []

    @classproperty
    def _s_columns(cls) -> Dict[str, Column]:
        """
        :return: the columns that are exposed by the api
        """
        if not hasattr(cls, "__mapper__"):
            return {}
        return column_map(cls)

    @classproperty
    def _s_relationships(cls) -> Dict[str, RelationshipProperty]:
        """
        :return: the relationships used for (de)serialization
        """
        if not hasattr(cls, "__mapper__"):
            return {}
        return relationship_map(cls)

    @property
    def _s_trashed(self) -> bool:
        return is_trashed(self)

    def _s_soft_delete(self) -> None:
        """
        Mark the instance as deleted
        """
        setattr(self, self._s_soft_delete_column, datetime.datetime.now(datetime.timezone.utc))

    def _s_encode(self, fields=None, includes=None) -> Dict[str, Any]:
        return encode_instance(self, fields, includes)

    @classmethod
    def _s_validation_rules(cls, action: str, instance: Any = None) -> Dict[str, Any]:
        """
        Override this method to provide custom rules for an action ("create" or "update")
        :return: json schema fragments, merged into the generated ruleset
        """
        return cls._s_rules

    @classmethod
    def _s_sample_dict(cls) -> Dict[str, Any]:
        """
        :return: a sample to be used as an example payload in the swagger
        """
        sample = {}
        pks = primary_key_attrs(cls)
        for attr_name, column in cls._s_columns.items():
            if attr_name in pks and not cls.allow_client_generated_ids:
                continue
            if attr_name == cls._s_soft_delete_column:
                continue
            arg = None
            if hasattr(column, "sample"):
                arg = getattr(column, "sample")
            elif column.default is not None and not callable(column.default.arg):
                arg = column.default.arg
            else:
                try:
                    python_type = column.type.python_type
                    if python_type is datetime.datetime:
                        arg = str(datetime.datetime.min.replace(microsecond=0))
                    elif python_type is datetime.date:
                        arg = str(datetime.date.min)
                    elif python_type is datetime.time:
                        arg = str(datetime.time.min)
                    else:
                        arg = python_type()
                except NotImplementedError:
                    safcrud.log.debug(f"Failed to get python type for column {column} (NotImplementedError)")
                except Exception as exc:
                    safcrud.log.debug(f"Failed to get python type for column {column} ({exc})")
                    arg = ""
            if isinstance(arg, (int, float, str, bool)) or arg is None:
                sample[attr_name] = arg
            else:
                sample[attr_name] = str(arg)
        return sample
