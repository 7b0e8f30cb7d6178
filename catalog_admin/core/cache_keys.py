"""
catalog_admin/core/cache_keys.py - Deterministic dashboard cache keys
Key shape: dashboard:v<version>:<logical_name>:<k1=v1&k2=v2 | default>

Parameter names are sorted and every name and value percent-encoded, so the
same logical query always maps to the same key and a value can never smuggle
in another parameter. List values are sorted, de-duplicated and tagged with a
raw "[]" marker that no encoded scalar can produce.
"""
from __future__ import annotations

import hashlib
import json
import re
from typing import Annotated, Any, Literal, Mapping, Optional, Union
from urllib.parse import quote, unquote

from pydantic import BaseModel, Field, TypeAdapter

KEY_PREFIX = "dashboard"
DEFAULT_KEY_VERSION = "1"
DEFAULT_PARAMS = "default"
LIST_MARKER = "[]"
MAX_VALUE_LENGTH = 100

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_-]")

Scalar = Union[str, int, float, bool]


# ──────────────────────────────────────────────────────────────────────────────
# Key building
# ──────────────────────────────────────────────────────────────────────────────

def sanitize_name(name: Any) -> str:
    """Strip everything outside [A-Za-z0-9_-]."""
    return _UNSAFE_CHARS.sub("", str(name))


def _encode_param_name(name: Any) -> str:
    # Encoded rather than stripped so distinct names never share a key
    return quote(str(name), safe="")


def _render_scalar(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, BaseModel)):
        if isinstance(value, BaseModel):
            value = value.model_dump(mode="json")
        return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)
    return str(value)


def _render_item(value: Any) -> str:
    """JSON form of one list item, so 1 and "1" stay distinct."""
    if isinstance(value, BaseModel):
        value = value.model_dump(mode="json")
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)


def _digest(text: str) -> str:
    # Long values are digested, not truncated, so shared prefixes never collide
    if len(text) > MAX_VALUE_LENGTH:
        return "sha256-" + hashlib.sha256(text.encode("utf-8")).hexdigest()[:32]
    return text


def _render_value(value: Any) -> str:
    if isinstance(value, (list, tuple, set, frozenset)):
        rendered = sorted({_render_item(v) for v in value if v is not None})
        return LIST_MARKER + _digest(",".join(quote(v, safe="") for v in rendered))
    return _digest(quote(_render_scalar(value), safe=""))


def build_key(
    logical_name: str,
    params: Optional[Mapping[str, Any]] = None,
    version: str = DEFAULT_KEY_VERSION,
) -> str:
    """
    Build the cache key for one logical dashboard query.
    None-valued parameters are skipped; an empty bag renders as "default".
    """
    name = sanitize_name(logical_name)
    if not name:
        raise ValueError("logical_name must not be empty")

    pairs: list[tuple[str, str]] = []
    for raw_name, value in (params or {}).items():
        if value is None:
            continue
        pairs.append((_encode_param_name(raw_name), _render_value(value)))
    pairs.sort()

    body = "&".join(f"{k}={v}" for k, v in pairs) or DEFAULT_PARAMS
    return f"{KEY_PREFIX}:v{sanitize_name(version)}:{name}:{body}"


class ParsedKey(BaseModel):
    version: str
    logical_name: str
    params: dict[str, str] = {}


def parse_key(key: str) -> ParsedKey:
    """
    Inverse of build_key for the non-digested parts. Raises ValueError.
    List values come back with their "[]" marker and JSON-encoded items.
    """
    parts = key.split(":", 3)
    if len(parts) != 4 or parts[0] != KEY_PREFIX or not parts[1].startswith("v"):
        raise ValueError(f"Not a dashboard cache key: {key!r}")

    _, version, logical_name, body = parts
    params: dict[str, str] = {}
    if body != DEFAULT_PARAMS:
        for pair in body.split("&"):
            name, _, value = pair.partition("=")
            params[unquote(name)] = unquote(value)
    return ParsedKey(version=version[1:], logical_name=logical_name, params=params)


def key_encodes_id(key: str, entity_id: Any) -> bool:
    """True when the key's id parameter is exactly entity_id."""
    try:
        parsed = parse_key(key)
    except ValueError:
        return False
    return parsed.params.get("id") == _render_scalar(entity_id)


def key_has_logical_name(key: str, logical_name: str) -> bool:
    try:
        return parse_key(key).logical_name == sanitize_name(logical_name)
    except ValueError:
        return False


# ──────────────────────────────────────────────────────────────────────────────
# Typed dashboard queries
# ──────────────────────────────────────────────────────────────────────────────

class ListQuery(BaseModel):
    kind: Literal["list"] = "list"
    endpoint: str
    page: Optional[int] = None
    page_size: Optional[int] = None
    sort: Optional[str] = None


class DetailQuery(BaseModel):
    kind: Literal["detail"] = "detail"
    id: Union[int, str]


class EditQuery(BaseModel):
    kind: Literal["edit"] = "edit"
    id: Union[int, str]


class FilteredQuery(BaseModel):
    kind: Literal["filtered"] = "filtered"
    endpoint: str
    filters: dict[str, Union[Scalar, list[Scalar]]] = {}


DashboardQuery = Annotated[
    Union[ListQuery, DetailQuery, EditQuery, FilteredQuery],
    Field(discriminator="kind"),
]

_query_adapter: TypeAdapter[Any] = TypeAdapter(DashboardQuery)


def parse_query(data: Mapping[str, Any]) -> Any:
    """Validate a raw mapping into the matching query variant."""
    return _query_adapter.validate_python(data)


def query_params(query: Any) -> dict[str, Any]:
    """Map a query variant to its parameter bag."""
    if isinstance(query, ListQuery):
        return {
            "endpoint": query.endpoint,
            "page": query.page,
            "page_size": query.page_size,
            "sort": query.sort,
        }
    if isinstance(query, DetailQuery):
        return {"id": query.id, "view": "detail"}
    if isinstance(query, EditQuery):
        return {"id": query.id, "view": "edit"}
    if isinstance(query, FilteredQuery):
        params: dict[str, Any] = {"endpoint": query.endpoint}
        for name, value in query.filters.items():
            params[f"filter_{name}"] = value
        return params
    raise TypeError(f"Unknown dashboard query variant: {type(query).__name__}")


def key_for_query(
    logical_name: str,
    query: Any,
    version: str = DEFAULT_KEY_VERSION,
) -> str:
    return build_key(logical_name, query_params(query), version)
