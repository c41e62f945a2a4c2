# api_utils.py
import json
from typing import Any, Awaitable, Callable, Iterable, Optional
from fastapi import Query, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from tortoise.queryset import QuerySet

# ---------- React-Admin param parsing ----------
def parse_range(range_param: str) -> tuple[int, int]:
    try:
        start, end = json.loads(range_param)
        skip, end = int(start), int(end)
    except (ValueError, TypeError):
        raise HTTPException(400, "range must look like [start,end]")
    if skip < 0 or end < skip:
        raise HTTPException(400, "range must look like [start,end]")
    return skip, min(end - skip + 1, 500)

def parse_sort(sort_param: str, allowed_fields: Iterable[str], default: str = "id") -> str:
    allowed = set(allowed_fields) | {default}
    try:
        field, order = json.loads(sort_param)
    except (ValueError, TypeError):
        field, order = (default, "ASC")
    field = field if field in allowed else default
    prefix = "-" if str(order).upper() == "DESC" else ""
    return f"{prefix}{field}"

def parse_filter(filter_param: Optional[str]) -> dict:
    try:
        value = json.loads(filter_param or "{}")
    except ValueError:
        return {}
    return value if isinstance(value, dict) else {}

def to_bool(v) -> bool:
    if isinstance(v, bool):
        return v
    return str(v).strip().lower() in {"1", "true", "t", "yes", "y"}

# ---------- Query helpers ----------
def apply_filter_map(qs: QuerySet, filters: dict, fmap: dict[str, Callable[[QuerySet, Any], QuerySet]]) -> QuerySet:
    for key, fn in fmap.items():
        if key in filters and filters[key] not in (None, ""):
            qs = fn(qs, filters[key])
    return qs

def dump(obj: Any, schema: type[BaseModel]) -> dict:
    return schema.model_validate(obj).model_dump(mode="json")

async def paginate_and_respond(
    qs: QuerySet,
    skip: int,
    limit: int,
    order: str,
    schema: type[BaseModel],
    before_render: Optional[Callable[[list], Awaitable[Any]]] = None,
) -> JSONResponse:
    """206 + Content-Range page, the shape react-admin's simple REST client expects."""
    total = await qs.count()
    items = await qs.order_by(order).offset(skip).limit(limit)
    if before_render is not None:
        await before_render(items)
    end_real = skip + max(len(items) - 1, 0)
    return JSONResponse(
        status_code=206,
        content=[dump(it, schema) for it in items],
        headers={"Content-Range": f"items {skip}-{end_real}/{total}", "X-Total-Count": str(total)},
    )

def respond_item(obj: Any, schema: type[BaseModel], status_code: int = 200) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=dump(obj, schema))

# ---------- RA params container ----------
class RAListParams:
    def __init__(
        self,
        range: str = Query("[0,24]"),
        sort: str = Query('["id","ASC"]'),
        filter: str = Query("{}"),
    ):
        self.skip, self.limit = parse_range(range)
        self.filters = parse_filter(filter)
        self.sort = sort
