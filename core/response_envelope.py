from __future__ import annotations

import inspect
from dataclasses import dataclass
from functools import wraps
from typing import Any, Callable, Iterable

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from fastapi.routing import APIRoute
from starlette.responses import Response

from core.errors import ErrorCode

_RESPONSE_DOC_ATTR = "__response_doc_config__"
_REQUEST_LOCATIONS = {"body", "query", "path", "header", "cookie"}
_EXAMPLE_ERROR_CODES = {
    400: ErrorCode.VALIDATION_FAILED,
    401: ErrorCode.SIGNATURE_MISMATCH,
    404: ErrorCode.RESOURCE_NOT_FOUND,
    409: ErrorCode.ORDER_STATE_CONFLICT,
    422: ErrorCode.INVALID_AMOUNT,
    502: ErrorCode.REJECTED_ERROR,
    503: ErrorCode.INTERNAL_ERROR,
    504: ErrorCode.TIMEOUT,
}


@dataclass(frozen=True)
class ResponseDocConfig:
    message: str
    status_code: int
    description: str
    success_example: Any | None = None
    response_codes: dict[int, str] | None = None


def success_payload(data: Any, message: str = "Success", *, request_id: str | None = None) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "success": True,
        "message": message,
        "data": data,
    }
    if request_id:
        payload["requestId"] = request_id
    return payload


def error_payload(message: str, data: Any = None, *, request_id: str | None = None) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "success": False,
        "message": message,
        "data": data,
    }
    if request_id:
        payload["requestId"] = request_id
    return payload


def error_response(
    *,
    status_code: int,
    message: str,
    data: Any = None,
    headers: dict[str, str] | None = None,
    request_id: str | None = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        headers=headers,
        content=jsonable_encoder(error_payload(message=message, data=data, request_id=request_id)),
    )


def _parse_http_exception_detail(detail: Any) -> tuple[str, dict[str, Any]]:
    if isinstance(detail, dict):
        message = detail.get("message")
        if isinstance(message, str) and message.strip():
            return message, {"code": detail.get("code", "HTTP_EXCEPTION"), "details": detail.get("details")}
        return "Request failed", {"code": "HTTP_EXCEPTION", "details": detail}

    if detail is None:
        return "Request failed", {"code": "HTTP_EXCEPTION", "details": None}

    return str(detail), {"code": "HTTP_EXCEPTION", "details": None}


def request_id_of(request: Request | None) -> str | None:
    if request is None:
        return None
    return getattr(request.state, "request_id", None)


def http_exception_response(exc: HTTPException, request: Request | None = None) -> JSONResponse:
    message, data = _parse_http_exception_detail(exc.detail)
    return error_response(
        status_code=exc.status_code,
        message=message,
        data=data,
        request_id=request_id_of(request),
        headers=exc.headers,
    )


def _error_path(location_parts: Iterable[Any]) -> tuple[str, str]:
    parts = [str(part) for part in location_parts]
    if not parts:
        return "body", "(root)"
    if parts[0] in _REQUEST_LOCATIONS:
        return parts[0], ".".join(parts[1:]) or "(root)"
    return "body", ".".join(parts)


def format_validation_errors(errors: Iterable[dict[str, Any]]) -> dict[str, Any]:
    field_errors: list[dict[str, str]] = []
    missing_fields: list[str] = []

    for error in errors:
        raw_loc = error.get("loc")
        location, path = _error_path(raw_loc if isinstance(raw_loc, (list, tuple)) else [])
        error_type = str(error.get("type", "validation_error"))
        field_errors.append(
            {
                "path": path,
                "location": location,
                "message": str(error.get("msg", "Invalid value")),
                "errorType": error_type,
            }
        )
        if error_type == "missing" and path not in missing_fields:
            missing_fields.append(path)

    if missing_fields:
        summary = f"Validation failed: missing required fields: {', '.join(missing_fields)}."
    else:
        summary = f"Validation failed for {len(field_errors)} field(s)."
    return {"summary": summary, "missingFields": missing_fields, "fieldErrors": field_errors}


def validation_error_response(errors: Iterable[dict[str, Any]], request: Request | None = None) -> JSONResponse:
    return error_response(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        message="Validation error",
        data={"code": ErrorCode.VALIDATION_FAILED.value, "details": format_validation_errors(errors)},
        request_id=request_id_of(request),
    )


def _extract_request(*args: Any, **kwargs: Any) -> Request | None:
    for value in (*kwargs.values(), *args):
        if isinstance(value, Request):
            return value
    return None


def document_response(
    *,
    message: str = "Success",
    status_code: int = status.HTTP_200_OK,
    description: str = "Successful response",
    success_example: Any | None = None,
    response_codes: dict[int, str] | None = None,
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Wrap a route's return value in the success envelope and record its OpenAPI documentation."""

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        config = ResponseDocConfig(
            message=message,
            status_code=status_code,
            description=description,
            success_example=success_example,
            response_codes=response_codes,
        )

        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Response:
            result = func(*args, **kwargs)
            if inspect.isawaitable(result):
                result = await result

            if isinstance(result, Response):
                return result

            return JSONResponse(
                status_code=status_code,
                content=jsonable_encoder(
                    success_payload(
                        data=result,
                        message=message,
                        request_id=request_id_of(_extract_request(*args, **kwargs)),
                    )
                ),
            )

        setattr(wrapper, _RESPONSE_DOC_ATTR, config)
        return wrapper

    return decorator


def apply_response_documentation(app: FastAPI) -> None:
    updated = False

    for route in app.routes:
        if not isinstance(route, APIRoute):
            continue

        config = getattr(route.endpoint, _RESPONSE_DOC_ATTR, None)
        if not isinstance(config, ResponseDocConfig):
            continue

        route.status_code = config.status_code
        existing_responses = dict(route.responses or {})

        response_entry = dict(existing_responses.get(config.status_code, {}))
        response_entry.setdefault("description", config.description)
        response_entry.setdefault(
            "content",
            {"application/json": {"example": success_payload(data=config.success_example, message=config.message)}},
        )
        existing_responses[config.status_code] = response_entry

        for code, code_description in (config.response_codes or {}).items():
            entry = dict(existing_responses.get(code, {}))
            entry.setdefault("description", code_description)
            error_code = _EXAMPLE_ERROR_CODES.get(code, ErrorCode.INTERNAL_ERROR)
            entry.setdefault(
                "content",
                {
                    "application/json": {
                        "example": error_payload(
                            message=code_description,
                            data={"code": error_code.value, "details": None},
                        )
                    }
                },
            )
            existing_responses[code] = entry

        route.responses = existing_responses
        updated = True

    if updated:
        app.openapi_schema = None
