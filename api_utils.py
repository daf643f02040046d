# api_utils.py
import json
from typing import Any, Callable, Iterable
from fastapi import HTTPException, Query
from fastapi.responses import JSONResponse
from tortoise.queryset import QuerySet

from services.errors import BillingError, DuplicateKind, InvalidInput, NotFound

MAX_PAGE = 100

# ---------- Domain errors -> HTTP ----------
def http_error(e: BillingError) -> HTTPException:
    if isinstance(e, NotFound):
        return HTTPException(404, str(e))
    if isinstance(e, DuplicateKind):
        return HTTPException(409, str(e))
    if isinstance(e, InvalidInput):
        return HTTPException(422, str(e))
    return HTTPException(400, str(e))

# ---------- React-Admin list params ----------
class ListParams:
    """range=[start,end] (inclusive), sort=["field","ASC|DESC"], filter={...}"""

    def __init__(
        self,
        range: str = Query("[0,9]"),
        sort: str = Query('["id","ASC"]'),
        filter: str = Query("{}"),
    ):
        try:
            start, end = json.loads(range)
            self.skip = max(int(start), 0)
            self.limit = min(max(int(end) - self.skip + 1, 1), MAX_PAGE)
        except (ValueError, TypeError):
            raise HTTPException(400, f"Invalid range {range!r}")
        try:
            self.filters = json.loads(filter or "{}")
        except ValueError:
            raise HTTPException(400, f"Invalid filter {filter!r}")
        if not isinstance(self.filters, dict):
            raise HTTPException(400, "filter must be a JSON object")
        self.sort = sort

    def order_by(self, allowed_fields: Iterable[str]) -> str:
        allowed = set(allowed_fields) | {"id"}
        try:
            field, order = json.loads(self.sort)
        except (ValueError, TypeError):
            field, order = ("id", "ASC")
        field = field if field in allowed else "id"
        return f"-{field}" if str(order).upper() == "DESC" else field

    def apply_filters(self, qs: QuerySet, fmap: dict[str, Callable[[QuerySet, Any], QuerySet]]) -> QuerySet:
        for key, fn in fmap.items():
            if self.filters.get(key) is not None:
                qs = fn(qs, self.filters[key])
        return qs

# ---------- Responses ----------
async def list_response(
    qs: QuerySet,
    params: ListParams,
    order: str,
    to_pydantic: Callable[[Any], Any],
) -> JSONResponse:
    total = await qs.count()
    items = await qs.order_by(order).offset(params.skip).limit(params.limit)
    end_real = params.skip + max(len(items) - 1, 0)

    # Pydantic v2 keeps Decimal/date encoding consistent with the item endpoints
    content = [json.loads(to_pydantic(it).model_dump_json()) for it in items]
    return JSONResponse(
        status_code=206,
        content=content,
        headers={"Content-Range": f"items {params.skip}-{end_real}/{total}"},
    )

def respond_item(model_obj: Any, to_pydantic: Callable[[Any], Any], status_code: int = 200) -> JSONResponse:
    payload = json.loads(to_pydantic(model_obj).model_dump_json())
    return JSONResponse(status_code=status_code, content=payload)
