# -*- coding: utf-8 -*-

"""Transaction (unit-of-work) helpers.

``transaction(session)`` is the unit of atomicity of a write operation:
- the scoped work is committed when the block exits normally
- any exception rolls the session back and is re-raised
- the active transaction is tracked in a ContextVar so that nested code
  (the relation persister) can check it runs inside one
"""

from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Iterator, Optional

import safcrud


_TX_ACTIVE: ContextVar[bool] = ContextVar("safcrud_tx_active", default=False)


class RollbackRequest(Exception):
    """Raised inside a transaction scope to roll it back without an error, e.g. a hook short-circuit"""

    def __init__(self, response: Any = None) -> None:
        super().__init__("rollback requested")
        self.response = response


def in_transaction() -> bool:
    """Return True when a safcrud transaction scope is active."""
    return _TX_ACTIVE.get()


@contextmanager
def transaction(session: Any, operation: Optional[str] = None, model: Optional[str] = None, item_id: Any = None) -> Iterator[Any]:
    """Commit on success, roll back on every failure path.

    :param session: sqlalchemy session
    :param operation: name of the operation, used for logging
    :param model: name of the model, used for logging
    :param item_id: id of the item, used for logging
    """
    if in_transaction():
        raise RuntimeError("Nested safcrud transactions are not supported")

    token = _TX_ACTIVE.set(True)
    try:
        yield session
        session.commit()
    except RollbackRequest:
        session.rollback()
        safcrud.log.debug(f"{operation} {model} {item_id or ''}: rolled back on request")
        raise
    except Exception as exc:
        session.rollback()
        safcrud.log.error(f"{operation} {model} {item_id or ''}: rolled back, {type(exc).__name__}: {exc}")
        raise
    finally:
        _TX_ACTIVE.reset(token)
