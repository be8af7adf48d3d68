"""
Generic list-query engine used by every list endpoint:
  ?page=2&limit=10&sort=-sent,username&fields=id,username&role=student&sent[gte]=2024-01-01

- page is 1-based (default 1); limit defaults to settings.default_page_limit and is capped at max_page_limit.
- sort is a comma list; "-" prefix = descending. camelCase names are accepted (createdAt -> created_at).
- field[gte|gt|lte|lt|ne]=value become range comparisons; plain field=value is equality.
- Only fields in the caller's allow-list can be filtered, sorted or projected.
- Caller filters (ownership, role != admin, ...) are ANDed with the query filters and can't be overridden.
"""
import re
import uuid
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Callable, Mapping

from sqlalchemy import and_
from sqlalchemy.orm import Session

from app.config import settings
from app.errors import NotFoundError, ValidationError

RESERVED_PARAMS = frozenset({"page", "limit", "sort", "fields"})
_COMPARATOR_RE = re.compile(r"^(?P<field>\w+)\[(?P<op>gte|gt|lte|lt|ne)\]$")
_CAMEL_RE = re.compile(r"(?<!^)(?=[A-Z])")
_TRUE = {"true", "1", "yes"}
_FALSE = {"false", "0", "no"}

PAGE_NOT_FOUND_MSG = "This page doesn't exist."
NUMERIC_PAGINATION_MSG = "Please provide numerical values for pagination query variables (page and limit)."


def to_field_name(name: str) -> str:
    """createdAt -> created_at; snake_case names pass through."""
    return _CAMEL_RE.sub("_", name.strip()).lower()


def _coerce(raw: str, python_type: type) -> Any:
    if python_type is bool:
        v = raw.strip().lower()
        if v in _TRUE:
            return True
        if v in _FALSE:
            return False
        raise ValueError(raw)
    if python_type is datetime:
        return datetime.fromisoformat(raw.strip().replace("Z", "+00:00"))
    if python_type is date:
        return date.fromisoformat(raw.strip())
    if python_type is uuid.UUID:
        return uuid.UUID(raw.strip())
    if python_type in (int, float):
        return python_type(raw)
    return raw


def _python_type(column) -> type:
    try:
        return column.type.python_type
    except NotImplementedError:
        return str


@dataclass
class Page:
    items: list
    total: int
    page: int
    limit: int
    fields: list[str] | None = None

    def serialize(self, to_dict: Callable[[Any], dict]) -> dict:
        """Build the response body; apply the ?fields= projection (id is always kept)."""
        rows = [to_dict(item) for item in self.items]
        if self.fields:
            keep = set(self.fields) | {"id"}
            rows = [{k: v for k, v in row.items() if k in keep} for row in rows]
        return {"items": rows, "total": self.total, "page": self.page, "limit": self.limit}


class QueryFeatures:
    """Parse list query params against an allow-list of columns and run the query."""

    def __init__(
        self,
        model,
        params: Mapping[str, str],
        allowed: Mapping[str, Any],
        default_sort: str = "-created_at",
    ):
        self.model = model
        self.allowed = dict(allowed)
        self.default_sort = default_sort
        params = dict(params)
        self.page, self.limit = self._parse_pagination(params.get("page"), params.get("limit"))
        self.sort_spec = params.get("sort") or default_sort
        self.fields = self._parse_fields(params.get("fields"))
        self.filters = self._parse_filters({k: v for k, v in params.items() if k not in RESERVED_PARAMS})

    @staticmethod
    def _parse_pagination(page_raw: str | None, limit_raw: str | None) -> tuple[int, int]:
        try:
            page = int(page_raw) if page_raw not in (None, "") else 1
            limit = int(limit_raw) if limit_raw not in (None, "") else settings.default_page_limit
        except (TypeError, ValueError):
            raise ValidationError(NUMERIC_PAGINATION_MSG)
        if page < 1 or limit < 1:
            raise ValidationError("page and limit must be positive integers.")
        return page, min(limit, settings.max_page_limit)

    def _column(self, name: str):
        field = to_field_name(name)
        if field not in self.allowed:
            raise ValidationError(f"Unknown or non-queryable field: {name}")
        return field, self.allowed[field]

    def _parse_fields(self, raw: str | None) -> list[str] | None:
        if not raw:
            return None
        fields = []
        for name in raw.split(","):
            if name.strip():
                field, _ = self._column(name)
                fields.append(field)
        return fields or None

    def _parse_filters(self, params: Mapping[str, str]) -> list:
        clauses = []
        for key, raw in params.items():
            m = _COMPARATOR_RE.match(key)
            name, op = (m.group("field"), m.group("op")) if m else (key, "eq")
            field, column = self._column(name)
            try:
                value = _coerce(raw, _python_type(column))
            except (TypeError, ValueError):
                raise ValidationError(f"Invalid value for {field}: {raw}")
            if op == "eq":
                clauses.append(column == value)
            elif op == "ne":
                clauses.append(column != value)
            elif op == "gte":
                clauses.append(column >= value)
            elif op == "gt":
                clauses.append(column > value)
            elif op == "lte":
                clauses.append(column <= value)
            else:
                clauses.append(column < value)
        return clauses

    def order_by(self) -> list:
        order = []
        for name in self.sort_spec.split(","):
            name = name.strip()
            if not name:
                continue
            desc = name.startswith("-")
            _, column = self._column(name.lstrip("-"))
            order.append(column.desc() if desc else column.asc())
        # unique tie-breaker keeps offset pages stable when sort keys repeat
        order.append(self.model.id.asc())
        return order

    def execute(self, db: Session, *caller_filters) -> Page:
        """Run count + page query. NotFoundError when page > 1 starts past the last match."""
        q = db.query(self.model)
        conditions = [*caller_filters, *self.filters]
        if conditions:
            q = q.filter(and_(*conditions))
        total = q.count()
        skip = (self.page - 1) * self.limit
        if self.page > 1 and skip >= total:
            raise NotFoundError(PAGE_NOT_FOUND_MSG)
        items = q.order_by(*self.order_by()).offset(skip).limit(self.limit).all()
        return Page(items=items, total=total, page=self.page, limit=self.limit, fields=self.fields)
