import datetime

import pytest
from sqlalchemy import Column, ForeignKey, Integer, String
from sqlalchemy.orm import DeclarativeBase, relationship

from safcrud import SAFCRUDBase
from safcrud.errors import InvalidResourceError, SystemValidationError
from safcrud.registry import MANY, MANY_TO_MANY, ONE, EntityRegistry, default_resource_id

from demo_models import Category, Product, Review, Supplier, Tag


class Base(DeclarativeBase):
    pass


class ProductCategory(SAFCRUDBase, Base):
    __tablename__ = "product_category"
    id = Column(Integer, primary_key=True)
    name = Column(String(20), nullable=False)


class Person(SAFCRUDBase, Base):
    __tablename__ = "person"
    id = Column(Integer, primary_key=True)
    category_id = Column(Integer, ForeignKey("product_category.id"))
    category = relationship(ProductCategory)


class Human(SAFCRUDBase, Base):
    __tablename__ = "human"
    _s_resource_id = "people"
    id = Column(Integer, primary_key=True)


class Documentation(SAFCRUDBase, Base):
    __tablename__ = "documentation"
    _s_resource_id = "docs"
    id = Column(Integer, primary_key=True)


class Hidden(SAFCRUDBase, Base):
    __tablename__ = "hidden"
    _s_expose = False
    id = Column(Integer, primary_key=True)


class BrokenSoftDelete(SAFCRUDBase, Base):
    __tablename__ = "broken_soft_delete"
    _s_soft_delete_column = "removed_at"
    id = Column(Integer, primary_key=True)


class Plain(Base):
    __tablename__ = "plain"
    id = Column(Integer, primary_key=True)


@pytest.mark.parametrize(
    "model, expected",
    [(ProductCategory, "product-categories"), (Person, "people"), (Category, "categories"), (Review, "reviews")],
)
def test_default_resource_id(model, expected) -> None:
    assert default_resource_id(model) == expected


def test_build_registers_exposed_models() -> None:
    registry = EntityRegistry.build([ProductCategory, Person, Hidden, Plain])

    assert registry.resource_ids == ["product-categories", "people"]
    assert "hidden" not in registry
    assert len(registry) == 2
    assert registry.resolve("people").model is Person


def test_colliding_resource_ids() -> None:
    with pytest.raises(SystemValidationError) as exc_info:
        EntityRegistry.build([Person, Human])

    assert "Person" in exc_info.value.message
    assert "Human" in exc_info.value.message


def test_reserved_resource_id() -> None:
    with pytest.raises(SystemValidationError):
        EntityRegistry.build([Documentation])


def test_unknown_soft_delete_column() -> None:
    with pytest.raises(SystemValidationError):
        EntityRegistry.build([BrokenSoftDelete])


def test_resolve_unknown_resource() -> None:
    registry = EntityRegistry.build([Person])

    with pytest.raises(InvalidResourceError) as exc_info:
        registry.resolve("persons")

    assert exc_info.value.status_code == 400
    assert exc_info.value.details == {"resource": "persons"}


def test_rebuild_leaves_the_registry_untouched() -> None:
    registry = EntityRegistry.build([ProductCategory])
    rebuilt = registry.rebuild([ProductCategory, Person])

    assert "people" not in registry
    assert "people" in rebuilt


def test_describe_transient_model() -> None:
    registry = EntityRegistry.build([Person])
    descriptor = registry.describe(ProductCategory)

    assert registry.for_model(ProductCategory) is None
    assert descriptor.resource_id == "product-categories"
    assert descriptor.type_name == "ProductCategory"


def test_product_descriptor(registry) -> None:
    descriptor = registry.resolve("products")

    assert descriptor.type_name == "Product"
    assert descriptor.table_name == "products"
    assert descriptor.primary_keys == ("id",)
    assert descriptor.unique_fields == ("sku",)
    assert "id" not in descriptor.fillable_fields
    assert {"name", "price", "category_id", "supplier_id"} <= descriptor.fillable_fields
    assert descriptor.supports_soft_delete is False

    relations = descriptor.relations
    assert relations["category"].cardinality == ONE
    assert relations["category"].owning is True
    assert relations["reviews"].cardinality == MANY
    assert relations["reviews"].deletes_with_parent is True
    assert relations["tags"].cardinality == MANY_TO_MANY
    assert relations["tags"].pivot_fields == frozenset({"position"})
    assert relations["tags"].related_model is Tag


def test_soft_delete_descriptor(registry) -> None:
    descriptor = registry.resolve("suppliers")

    assert descriptor.supports_soft_delete is True
    assert descriptor.soft_delete_column == "deleted_at"
    assert "deleted_at" not in descriptor.fillable_fields
    assert descriptor.relations["products"].related_model is Product
    assert descriptor.relations["products"].deletes_with_parent is False


def test_registry_for_model(registry) -> None:
    assert registry.for_model(Supplier).resource_id == "suppliers"
    assert [descriptor.type_name for descriptor in registry] == ["Category", "Supplier", "Tag", "Product", "Review"]


def test_model_introspection(app) -> None:
    assert list(Product._s_columns) == ["id", "name", "sku", "price", "released_at", "category_id", "supplier_id"]
    assert set(Product._s_relationships) == {"category", "supplier", "tags", "reviews"}

    supplier = Supplier(name="ACME")
    assert supplier._s_trashed is False
    supplier._s_soft_delete()
    assert supplier._s_trashed is True
    assert supplier.deleted_at.tzinfo is datetime.timezone.utc
