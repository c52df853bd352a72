"""
api/handlers.py -- Generic document handlers shared by the entity routers.

Each function takes an explicit docstore.store.Collection plus the request
inputs and returns the response envelope as a plain dict. The routers in
api/routes/v1/ only decide which collection, which auth gate, and which
Populate options apply; the CRUD behaviour is written once, here.

  get_all    -> {"results": n, "data": [...]}   (QueryFeatures + find)
  get_one    -> {"data": {...}}                 NotFoundError when absent
  create_one -> {"data": {...}}                 caller returns 201
  update_one -> {"data": {...}}                 NotFoundError when absent
  delete_one -> None                            NotFoundError when absent, caller returns 204
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any, Optional

from fastapi import Request

from core.errors import NotFoundError, ValidationError
from core.query import VERSION_FIELD, QueryFeatures, parse_query_params
from docstore.store import Collection, Populate, project


def query_params(request: Request) -> dict[str, Any]:
    """Request query string in the nested shape QueryFeatures reads."""
    return parse_query_params(request.query_params.multi_items())


def _not_found(collection: Collection) -> NotFoundError:
    label = collection.name[:-1] if collection.name.endswith("s") else collection.name
    return NotFoundError(f"No {label} found with that ID.")


def _body(data: Any) -> dict[str, Any]:
    if not isinstance(data, Mapping):
        raise ValidationError("Request body must be a JSON object.")
    return dict(data)


def get_all(
    collection: Collection,
    params: Mapping[str, Any],
    base_filters: Optional[Mapping[str, Any]] = None,
    populate: Iterable[Populate] = (),
    default_limit: int = 100,
) -> dict[str, Any]:
    spec = QueryFeatures(params, base_filters=base_filters, default_limit=default_limit).build()
    docs = collection.find(spec, populate=populate)
    return {"results": len(docs), "data": docs}


def get_one(collection: Collection, doc_id: int, populate: Iterable[Populate] = ()) -> dict[str, Any]:
    doc = collection.get(doc_id, populate=populate)
    if doc is None:
        raise _not_found(collection)
    return {"data": project(doc, [], [VERSION_FIELD])}


def create_one(collection: Collection, data: Any) -> dict[str, Any]:
    doc = collection.create(_body(data))
    return {"data": project(doc, [], [VERSION_FIELD])}


def update_one(collection: Collection, doc_id: int, data: Any) -> dict[str, Any]:
    doc = collection.update(doc_id, _body(data))
    if doc is None:
        raise _not_found(collection)
    return {"data": project(doc, [], [VERSION_FIELD])}


def delete_one(collection: Collection, doc_id: int) -> None:
    if not collection.delete(doc_id):
        raise _not_found(collection)
