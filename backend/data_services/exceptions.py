"""
Data Services — Custom Exception Hierarchy
============================================

What:  Application-specific exceptions for startup and request failures.
How:   Each exception carries a message, an optional context dict and a
       machine-readable `error_code`. The route error handler turns them into
       `{errorCode, errorMsg, errorDetails}` payloads.
Who:   Raised by the loader, the OpenAPI synthesizer, the router builder,
       the request validator and the data store.

Exception Hierarchy:
    DataServicesError (base)
    ├── ComponentLoadError             → startup abort
    │   └── FailedToLoadInjectableError → startup abort (missing dependency)
    ├── OpenApiDefinitionError         → startup abort (bad @openapi block)
    ├── RouteDefinitionError           → startup abort (bad route definition)
    └── ValidationError                → 400 Bad Request

Startup errors are never turned into HTTP responses: they propagate out of
ApiServer construction and the process exits before the socket is opened.
"""

from typing import Any, Dict, List, Optional


class DataServicesError(Exception):
    """
    Base exception for all Data Services errors.

    Attributes:
        message:  Human-readable error description
        context:  Additional debug info, returned as errorDetails where relevant
    """

    error_code = "DataServicesError"

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ComponentLoadError(DataServicesError):
    """Raised when a component file or module cannot be located, imported or built."""

    error_code = "FailedToLoadComponent"

    def __init__(
        self,
        message: str = "Failed to load component",
        path: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if path:
            ctx["path"] = path
        super().__init__(message=message, context=ctx)
        self.path = path


class FailedToLoadInjectableError(ComponentLoadError):
    """
    Raised when a component declares a dependency that has not been loaded yet.

    Lookup is case-insensitive over injectables first, then services, and only
    sees components loaded strictly before the one being built. The usual fix
    is to reorder the locations so the dependency loads first.
    """

    error_code = "FailedToLoadInjectable"

    def __init__(self, missing_injectable_name: str, path: Optional[str] = None):
        message = (
            f"Failed to load Injectable ({missing_injectable_name}), make sure this is "
            "loaded. This may require changing the order in which the injectables are loaded."
        )
        super().__init__(
            message=message,
            path=path,
            context={"missingInjectableName": missing_injectable_name},
        )
        self.missing_injectable_name = missing_injectable_name


class OpenApiDefinitionError(DataServicesError):
    """
    Raised when the OpenAPI document cannot be built.

    When:  An @openapi block is not valid YAML or not a mapping, or the
           merged document holds a local `$ref` that points nowhere.
    """

    error_code = "InvalidOpenApiDefinition"


class RouteDefinitionError(DataServicesError):
    """
    Raised when a path/method in the OpenAPI document cannot be bound.

    When:  No serviceMethod property, a reference that is not exactly
           `ClassName.method_name`, or a service/middleware that is not loaded.
    """

    error_code = "InvalidRouteDefinition"

    def __init__(
        self,
        method: str,
        path: str,
        reason: str,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"{method.upper()} {path} was defined in the Open API Definition but {reason}"
        ctx = context or {}
        ctx.update({"method": method.upper(), "path": path})
        super().__init__(message=message, context=ctx)


class ValidationError(DataServicesError):
    """
    Raised when a request fails validation.

    HTTP:    400 Bad Request

    Example response:
        {
            "errorCode": "ValidationError",
            "errorMsg": "Error while validating request",
            "errorDetails": {
                "validationErrors": [
                    {"location": "query", "name": "page", "message": "0 is less than the minimum of 1"}
                ]
            }
        }
    """

    error_code = "ValidationError"

    def __init__(
        self,
        message: str = "Validation failed",
        errors: Optional[List[Dict[str, Any]]] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)
        self.errors = errors or []
