"""
core/errors.py -- Error taxonomy shared by every Threadboard component.

Every failure a caller can observe is a ServiceError subclass carrying a
stable machine-readable code and a human-readable message. Transport layers
map codes to their own status vocabulary; the core never does.

  invalid_input  -- malformed or missing fields, detected before any mutation
  not_found      -- user / resource / vote absent
  conflict       -- duplicate username or id
  unauthorized   -- bad credentials or bad token
  forbidden      -- authenticated, but not the owner of the resource
  internal_error -- store failure; carries the underlying message, never retried

Layer rule: docstore/ is the leaf layer and knows nothing about this taxonomy.
core/ may import from docstore/, never from auth/, votes/ or content/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from docstore.models import StoreError

logger = logging.getLogger("threadboard.errors")


class ServiceError(Exception):
    """Base class for all errors surfaced by core components."""

    code = "service_error"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.code)
        self.message = message or self.code

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


class InvalidInput(ServiceError):
    code = "invalid_input"


class NotFound(ServiceError):
    code = "not_found"


class Conflict(ServiceError):
    code = "conflict"


class Unauthorized(ServiceError):
    code = "unauthorized"


class Forbidden(ServiceError):
    code = "forbidden"


class InternalError(ServiceError):
    code = "internal_error"


@contextmanager
def store_boundary(operation: str) -> Iterator[None]:
    """Translate store-layer failures into InternalError at a component edge.

    Usage:
        with store_boundary("register"):
            store.create("users", user_id, doc)

    A StoreError becomes InternalError with the original message. Callers
    catch the specific store errors they expect (DuplicateKey,
    DocumentNotFound) inside the block; anything else is a store failure.
    Nothing is retried.
    """
    try:
        yield
    except StoreError as exc:
        logger.error("Store failure during %s: %s", operation, exc)
        raise InternalError(str(exc)) from exc
