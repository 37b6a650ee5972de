"""
Data Services — Router Builder
================================

What:  Turns the OpenAPI document into registered FastAPI routes, one per
       path × method, each bound to a loaded service method.
How:   1. build_route_entries() validates every operation and produces typed
          RouteEntry values. Any problem is fatal and raised before the
          listening socket is opened.
       2. RouteBuilder.register() adds one endpoint per entry. The endpoint
          runs the route's middleware chain, validates the request, calls the
          service method and normalizes its result.
       3. register_exception_handlers() covers everything outside the
          generated routes (404, 405, stray errors).
Who:   Used by ApiServer during construction.

Request flow inside one generated endpoint:
    middlewares (in serviceMiddlewares order, stop once a response is sent)
        → RequestValidator.validate()
        → Service.method(request_helper, response_helper)
        → {..., "msg": "<METHOD> request to <path> succeeded.", "status": true}

Error mapping:
    middleware / validation raised ValidationError → 400 ValidationError
    middleware raised anything else                → 500 generic error
    service method raised (sync or async)          → 400 {errorCode, errorMsg}
    unknown route                                  → 404 NotFound
"""

import inspect
import logging
import re
from typing import Any, Callable, Dict, List, Mapping

from fastapi import FastAPI, Request
from pydantic import BaseModel, Field
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.responses import Response

from data_services.exceptions import RouteDefinitionError, ValidationError
from data_services.http.helpers import MutableRequestHelper, RequestHelper, ResponseHelper
from data_services.openapi import RequestValidator, iter_operations

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Route Entries
# ══════════════════════════════════════════════════════════════════════════

class MiddlewareRef(BaseModel):
    """One `ClassName.method` entry of serviceMiddlewares."""

    class_name: str
    method_name: str


class RouteEntry(BaseModel):
    """A validated path × method binding derived from the OpenAPI document."""

    method: str = Field(description="Lower-case HTTP method")
    path: str = Field(description="Path template as written in the document")
    route_path: str = Field(description="Path registered with the framework")
    service_name: str
    method_name: str
    middlewares: List[MiddlewareRef] = Field(default_factory=list)
    operation: Dict[str, Any] = Field(default_factory=dict)


def normalize_route_path(path: str) -> str:
    """
    Convert an OpenAPI path template to the framework's route syntax.

    Example:
        "/items/{ id }/"  → "/items/{id}"
    """
    normalized = re.sub(r"\{\s*([^{}\s]+)\s*\}", r"{\1}", path.strip())
    if not normalized.startswith("/"):
        normalized = "/" + normalized
    if len(normalized) > 1:
        normalized = normalized.rstrip("/")
    return normalized


def _split_reference(reference: Any) -> List[str]:
    if not isinstance(reference, str):
        return []
    parts = reference.split(".")
    if len(parts) != 2 or not all(parts):
        return []
    return parts


def build_route_entries(
    document: Mapping[str, Any],
    services: Mapping[str, Any],
    middlewares: Mapping[str, Any],
) -> List[RouteEntry]:
    """
    Validate every operation of `document` and return its RouteEntry list.

    Raises:
        RouteDefinitionError: missing or malformed serviceMethod, unknown
                              service or method, malformed or unknown
                              middleware reference
    """
    entries: List[RouteEntry] = []
    for method, path, operation in iter_operations(document):
        if "serviceMethod" not in operation:
            raise RouteDefinitionError(
                method, path,
                "did not specify a serviceMethod property under the method definition.",
            )
        reference = operation["serviceMethod"]
        parts = _split_reference(reference)
        if not parts:
            raise RouteDefinitionError(
                method, path,
                "the serviceMethod property is not of the format "
                f"<ServiceName>.<ServiceMethod> ({reference}).",
            )
        service_name, method_name = parts
        service = services.get(service_name)
        if service is None or not callable(getattr(service, method_name, None)):
            raise RouteDefinitionError(
                method, path,
                "we could not find a loaded serviceMethod using serviceMethod "
                f"property {reference}.",
            )

        raw_middlewares = operation.get("serviceMiddlewares") or []
        if not isinstance(raw_middlewares, list):
            raise RouteDefinitionError(
                method, path, "the serviceMiddlewares property is not a list."
            )
        refs: List[MiddlewareRef] = []
        for name in raw_middlewares:
            middleware_parts = _split_reference(name)
            if not middleware_parts:
                raise RouteDefinitionError(
                    method, path,
                    "the serviceMiddlewares property is not of the format "
                    f"<MiddlewareClassName>.<MiddlewareMethod> ({name}).",
                )
            class_name, operation_name = middleware_parts
            instance = middlewares.get(class_name)
            if instance is None or not callable(getattr(instance, operation_name, None)):
                raise RouteDefinitionError(
                    method, path,
                    f"we could not find a loaded middleware using middleware property {name}.",
                )
            refs.append(MiddlewareRef(class_name=class_name, method_name=operation_name))

        entries.append(
            RouteEntry(
                method=method,
                path=path,
                route_path=normalize_route_path(path),
                service_name=service_name,
                method_name=method_name,
                middlewares=refs,
                operation=operation,
            )
        )
    return entries


# ══════════════════════════════════════════════════════════════════════════
# Result Normalization & Error Responses
# ══════════════════════════════════════════════════════════════════════════

def normalize_result(result: Any, method: str, path: str) -> Dict[str, Any]:
    """
    Wrap a service method's return value in the response envelope.

    Example:
        normalize_result([1, 2], "GET", "/data")
        → {"data": [1, 2], "msg": "GET request to /data succeeded.", "status": True}
    """
    if result is None:
        body: Dict[str, Any] = {}
    elif isinstance(result, Mapping):
        body = dict(result)
    else:
        body = {"data": result}
    body.setdefault("msg", f"{method.upper()} request to {path} succeeded.")
    body.setdefault("status", True)
    return body


def handle_route_error(
    error: Exception,
    request_helper: RequestHelper,
    response_helper: ResponseHelper,
) -> Response:
    """Turn an exception raised outside the service method into a response."""
    if response_helper.headers_sent:
        return response_helper.response
    if isinstance(error, ValidationError):
        logger.warning(
            "Validation failed for %s %s: %s",
            request_helper.method, request_helper.path, error.message,
        )
        return response_helper.respond_with_error_details(
            "ValidationError",
            error.message,
            {"validationErrors": error.errors, "request": request_helper.describe()},
            400,
        )
    logger.error(
        "Unexpected error handling %s %s: %s",
        request_helper.method, request_helper.path, str(error),
        exc_info=error,
    )
    return response_helper.respond_with_error_details(
        "InternalServerError",
        "An unexpected error occurred.",
        {"request": request_helper.describe()},
        500,
    )


async def _call(func: Callable[..., Any], *args: Any) -> Any:
    result = func(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


# ══════════════════════════════════════════════════════════════════════════
# Route Registration
# ══════════════════════════════════════════════════════════════════════════

class RouteBuilder:
    """
    Registers RouteEntry values on a FastAPI application.

    Args:
        services:    Loaded service instances keyed by class name
        middlewares: Loaded middleware instances keyed by class name
        validator:   RequestValidator bound to the same document
    """

    def __init__(
        self,
        services: Mapping[str, Any],
        middlewares: Mapping[str, Any],
        validator: RequestValidator,
    ):
        self.services = services
        self.middlewares = middlewares
        self.validator = validator

    def register(self, app: FastAPI, entries: List[RouteEntry]) -> None:
        for entry in entries:
            app.add_api_route(
                entry.route_path,
                self._endpoint(entry),
                methods=[entry.method.upper()],
                name=f"{entry.service_name}.{entry.method_name}",
                include_in_schema=False,
            )
            logger.debug(
                "Registered %s %s → %s.%s",
                entry.method.upper(), entry.route_path, entry.service_name, entry.method_name,
            )

    def _endpoint(self, entry: RouteEntry) -> Callable[[Request], Any]:
        service_method = getattr(self.services[entry.service_name], entry.method_name)
        chain = [
            (ref, getattr(self.middlewares[ref.class_name], ref.method_name))
            for ref in entry.middlewares
        ]

        async def endpoint(request: Request) -> Response:
            request.state.service_method = f"{entry.service_name}.{entry.method_name}"
            request_helper = MutableRequestHelper(request)
            response_helper = ResponseHelper()

            try:
                for ref, middleware in chain:
                    if response_helper.headers_sent:
                        break
                    try:
                        await _call(middleware, request_helper, response_helper, entry.operation)
                    except Exception:
                        logger.error(
                            "Failed to execute middleware (%s.%s)", ref.class_name, ref.method_name
                        )
                        raise
                if response_helper.headers_sent:
                    return response_helper.response
                await self.validator.validate(entry.method, entry.path, request_helper)
            except Exception as e:
                return handle_route_error(e, request_helper, response_helper)

            try:
                result = await _call(service_method, RequestHelper(request), response_helper)
            except Exception as e:
                logger.warning(
                    "Service method %s.%s failed: %s",
                    entry.service_name, entry.method_name, str(e),
                    exc_info=True,
                )
                if response_helper.headers_sent:
                    return response_helper.response
                return response_helper.bad_request(e)

            if response_helper.headers_sent:
                return response_helper.response
            if isinstance(result, Response):
                return result
            return response_helper.ok(
                normalize_result(result, request_helper.method, request_helper.path)
            )

        endpoint.__name__ = f"{entry.service_name}_{entry.method_name}_{entry.method}"
        return endpoint


# ══════════════════════════════════════════════════════════════════════════
# Application-wide Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def register_exception_handlers(app: FastAPI) -> None:
    """
    Error responses for requests that never reach a generated endpoint.

    Handler hierarchy:
        StarletteHTTPException 404 → NotFound
        StarletteHTTPException     → its own status code
        ValidationError            → 400 ValidationError
        Exception (fallback)       → 500 InternalServerError
    """

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException):
        response_helper = ResponseHelper()
        if exc.status_code == 404:
            return response_helper.not_found()
        code = "MethodNotAllowed" if exc.status_code == 405 else "HTTPError"
        return response_helper.respond_with_error_details(
            code, str(exc.detail), None, exc.status_code
        )

    @app.exception_handler(ValidationError)
    async def handle_validation_error(request: Request, exc: ValidationError):
        return handle_route_error(exc, RequestHelper(request), ResponseHelper())

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        return handle_route_error(exc, RequestHelper(request), ResponseHelper())
