import logging
from types import SimpleNamespace

import pytest

import safcrud
from safcrud.config import get_config, parse_bool
from safcrud.errors import (
    HIDDEN_LOG,
    SANITIZED_MESSAGE,
    DependencyConstraintError,
    GenericError,
    NotFoundError,
    ValidationError,
)
from safcrud.tx import RollbackRequest, in_transaction, transaction
from safcrud.util import chunked, kebab_case, unique


class FakeSession:
    def __init__(self) -> None:
        self.calls = []

    def commit(self) -> None:
        self.calls.append("commit")

    def rollback(self) -> None:
        self.calls.append("rollback")


def test_validation_error_envelope() -> None:
    error = ValidationError(details={"price": ["-1 is less than the minimum of 0"]})

    assert error.status_code == 422
    assert error.to_envelope() == {
        "success": False,
        "message": "Validation failed",
        "error": {"type": "ValidationError", "details": {"price": ["-1 is less than the minimum of 0"]}},
    }


def test_envelope_without_details() -> None:
    envelope = NotFoundError().to_envelope()

    assert envelope == {"success": False, "message": "Resource not found", "error": {"type": "NotFound"}}


def test_dependency_error_lists_dependents() -> None:
    error = DependencyConstraintError(dependents={"products": 3})

    assert error.status_code == 409
    assert error.to_envelope()["error"] == {"type": "DependencyConstraintViolation", "details": {"products": 3}}


def test_generic_error_is_sanitized(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(safcrud.log, "level", logging.WARNING)

    error = GenericError("password=secret")

    assert error.status_code == 500
    assert "secret" not in error.message
    assert error.message == f"{SANITIZED_MESSAGE} {HIDDEN_LOG}"


def test_generic_error_in_debug_mode(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(safcrud.log, "level", logging.DEBUG)

    error = GenericError("boom")

    assert error.message == f"{SANITIZED_MESSAGE}: boom"


@pytest.mark.parametrize("value, expected", [("1", True), ("Yes", True), (" on ", True), ("0", False), ("", False), (None, False), (True, True)])
def test_parse_bool(value, expected) -> None:
    assert parse_bool(value) is expected


def test_parse_bool_invalid() -> None:
    with pytest.raises(ValueError):
        parse_bool("maybe")


def test_get_config_lookup_order(app, monkeypatch: pytest.MonkeyPatch) -> None:
    # app config
    assert get_config("MAX_PER_PAGE") == 100
    # class default
    assert get_config("PK_DELIMITER") == "_"
    # environment
    monkeypatch.setenv("SAFCRUD_TEST_OPTION", "value")
    assert get_config("SAFCRUD_TEST_OPTION") == "value"
    assert get_config("SAFCRUD_UNDEFINED_OPTION") is None


def test_get_config_casts_environment_values(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(safcrud.SAFCRUD, "SLOW_QUERY_THRESHOLD_MS", None)
    monkeypatch.setenv("SLOW_QUERY_THRESHOLD_MS", "250")

    assert get_config("SLOW_QUERY_THRESHOLD_MS") == 250


def test_transaction_commits() -> None:
    session = FakeSession()

    with transaction(session, "store", "Product") as tx_session:
        assert tx_session is session
        assert in_transaction()

    assert session.calls == ["commit"]
    assert not in_transaction()


def test_transaction_rolls_back_and_reraises() -> None:
    session = FakeSession()

    with pytest.raises(KeyError):
        with transaction(session, "update", "Product", 1):
            raise KeyError("price")

    assert session.calls == ["rollback"]
    assert not in_transaction()


def test_transaction_rollback_request() -> None:
    session = FakeSession()
    response = SimpleNamespace(status=403)

    with pytest.raises(RollbackRequest) as exc_info:
        with transaction(session, "destroy", "Product", 1):
            raise RollbackRequest(response)

    assert exc_info.value.response is response
    assert session.calls == ["rollback"]


def test_nested_transactions_are_rejected() -> None:
    session = FakeSession()

    with pytest.raises(RuntimeError):
        with transaction(session, "store"):
            with transaction(session, "store"):
                pass

    assert session.calls == ["rollback"]


def test_util_helpers() -> None:
    assert kebab_case("HTTPLog") == "http-log"
    assert kebab_case("ProductCategory") == "product-category"
    assert list(chunked(range(5), 2)) == [[0, 1], [2, 3], [4]]
    assert unique([3, 1, 3, 2, 1]) == [3, 1, 2]
    with pytest.raises(ValueError):
        list(chunked([1], 0))
