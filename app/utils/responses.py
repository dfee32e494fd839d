"""
Response envelope and CORS helpers

Every response body follows {success, data?, error?, meta?}; every
response carries CORS headers.
"""
import math

from fastapi.responses import JSONResponse

from app.schemas import ErrorDetail, PaginationMeta, ResponseMeta, StandardErrorResponse
from app.utils.time_helpers import utc_now


CORS_ALLOW_METHODS = "GET, OPTIONS"
CORS_ALLOW_HEADERS = "authorization, x-client-info, apikey, content-type"
CORS_MAX_AGE = "86400"

ERROR_CODES = {
    400: "BAD_REQUEST",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    422: "VALIDATION_ERROR",
    500: "INTERNAL_ERROR",
}


def cors_headers(origin: str | None, allowed_origins: list[str] | None) -> dict[str, str]:
    """Echo the request origin when it is allow-listed, otherwise '*'"""
    allow_origin = origin if origin and allowed_origins and origin in allowed_origins else "*"
    headers = {
        "Access-Control-Allow-Origin": allow_origin,
        "Access-Control-Allow-Methods": CORS_ALLOW_METHODS,
        "Access-Control-Allow-Headers": CORS_ALLOW_HEADERS,
        "Access-Control-Max-Age": CORS_MAX_AGE,
    }
    if allow_origin != "*":
        headers["Vary"] = "Origin"
    return headers


def response_meta(pagination: PaginationMeta | None = None) -> ResponseMeta:
    return ResponseMeta(
        timestamp=utc_now().isoformat().replace("+00:00", "Z"),
        pagination=pagination,
    )


def estimate_pagination(page: int, page_size: int, count: int) -> PaginationMeta:
    """
    Approximate pagination for merged results

    Providers expose no reliable combined total, so a full page implies at
    least one more item.
    """
    has_more = count == page_size
    total = page * page_size + 1 if has_more else (page - 1) * page_size + count
    total_pages = math.ceil(total / page_size) if total else 0
    return PaginationMeta(
        total=total,
        page=page,
        page_size=page_size,
        total_pages=total_pages,
        has_more=page < total_pages,
    )


def error_response(status_code: int, message: str, headers: dict[str, str] | None = None) -> JSONResponse:
    body = StandardErrorResponse(
        error=ErrorDetail(code=ERROR_CODES.get(status_code, "INTERNAL_ERROR"), message=message),
        meta=response_meta(),
    )
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(mode="json", by_alias=True),
        headers=headers,
    )
