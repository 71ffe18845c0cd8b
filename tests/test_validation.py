import pytest

from safcrud.errors import ValidationError
from safcrud.validation import CREATE, UPDATE, PayloadValidator, build_ruleset

from demo_models import Product, Review, Supplier


def test_create_ruleset() -> None:
    schema = build_ruleset(Product, CREATE)

    assert schema["type"] == "object"
    assert "id" not in schema["properties"]
    assert schema["properties"]["name"] == {"type": "string", "maxLength": 100}
    assert schema["properties"]["sku"] == {"type": ["string", "null"], "maxLength": 32}
    assert schema["properties"]["price"] == {"type": "number"}
    assert schema["required"] == ["name", "price", "category_id"]


def test_update_ruleset_has_no_required_fields() -> None:
    schema = build_ruleset(Product, UPDATE)

    assert "required" not in schema


def test_soft_delete_column_is_not_writable() -> None:
    schema = build_ruleset(Supplier, CREATE)

    assert "deleted_at" not in schema["properties"]


def test_invalid_action() -> None:
    with pytest.raises(ValueError):
        build_ruleset(Product, "destroy")


def test_model_rules_are_merged(registry) -> None:
    schema = registry.resolve("products").validation_rule_provider(CREATE)

    assert schema["properties"]["price"] == {"type": "number", "minimum": 0}


def test_payload_errors(registry) -> None:
    descriptor = registry.resolve("products")
    errors = PayloadValidator().errors(descriptor, CREATE, {"name": 12, "price": -3})

    assert set(errors) == {"name", "price", "category_id"}
    assert errors["category_id"] == ["'category_id' is a required property"]


def test_foreign_key_not_required_when_relation_is_given(registry) -> None:
    descriptor = registry.resolve("products")
    payload = {"name": "Hammer", "price": 10, "category": {"name": "Tools"}}

    assert PayloadValidator().errors(descriptor, CREATE, payload) == {}


def test_exempt_foreign_key_of_nested_item(registry) -> None:
    descriptor = registry.resolve("reviews")

    assert PayloadValidator().errors(descriptor, CREATE, {"rating": 4}, exempt=("product_id",)) == {}
    assert "product_id" in PayloadValidator().errors(descriptor, CREATE, {"rating": 4})


def test_nested_errors_are_prefixed(registry) -> None:
    descriptor = registry.describe(Review)

    with pytest.raises(ValidationError) as exc_info:
        PayloadValidator().validate(descriptor, CREATE, {"rating": "five"}, prefix="reviews.0", exempt=("product_id",))

    assert list(exc_info.value.details) == ["reviews.0.rating"]
    assert exc_info.value.status_code == 422
