"""
Data Services — Request/Response Abstractions
===============================================

What:  Thin wrappers handed to middlewares and service methods instead of the
       raw Starlette objects.
How:   RequestHelper reads from the Starlette request and keeps parsed state
       (payload, cookies) on `request.state`, so every helper built for the
       same request sees what an earlier middleware parsed.
       ResponseHelper accumulates headers and records whether a response has
       already been produced ("sent"); the route dispatcher returns that
       response and skips the remaining steps.

Error payload format (every non-2xx response produced here):
    {
        "errorCode": "ValidationError",
        "errorMsg": "Error while validating request",
        "errorDetails": {...},          # optional
        "requestId": "a1b2c3d4"
    }
"""

import json
from typing import Any, Dict, Mapping, Optional

from fastapi.encoders import jsonable_encoder
from starlette.datastructures import FormData, Headers, MutableHeaders
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from data_services.exceptions import DataServicesError, ValidationError
from data_services.middleware.request_context import request_id_var

_UNSET = object()


class RequestHelper:
    """Read access to one incoming request."""

    def __init__(self, request: Request):
        self._request = request

    @property
    def raw_request(self) -> Request:
        return self._request

    @property
    def method(self) -> str:
        return self._request.method

    @property
    def path(self) -> str:
        return self._request.url.path

    @property
    def headers(self) -> Headers:
        # Built from the scope each time so MutableRequestHelper edits show up
        return Headers(scope=self._request.scope)

    @property
    def content_type(self) -> str:
        return self.headers.get("content-type", "").split(";")[0].strip().lower()

    @property
    def cookies(self) -> Dict[str, str]:
        parsed = getattr(self._request.state, "cookies", None)
        if parsed is None:
            return dict(self._request.cookies)
        return parsed

    def set_cookies(self, cookies: Mapping[str, str]) -> None:
        self._request.state.cookies = dict(cookies)

    @property
    def has_payload(self) -> bool:
        return getattr(self._request.state, "payload", _UNSET) is not _UNSET

    def get_payload(self) -> Any:
        """Parsed request body, or None if no middleware parsed one."""
        payload = getattr(self._request.state, "payload", _UNSET)
        return None if payload is _UNSET else payload

    def set_payload(self, payload: Any) -> None:
        self._request.state.payload = payload

    async def load_payload(self) -> Any:
        """
        Parse the body as JSON if nothing has parsed it yet.

        Returns:
            The payload, or None for an empty body.
        Raises:
            ValidationError: the body is not valid JSON
        """
        if self.has_payload:
            return self.get_payload()
        body = await self._request.body()
        if not body.strip():
            self.set_payload(None)
            return None
        try:
            payload = json.loads(body)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ValidationError(
                message="Request body is not valid JSON",
                errors=[{"location": "body", "name": "body", "message": str(e)}],
            )
        self.set_payload(payload)
        return payload

    async def body(self) -> bytes:
        return await self._request.body()

    async def form(self) -> FormData:
        """Form fields of an urlencoded or multipart body (python-multipart)."""
        return await self._request.form()

    def get_query_params(self) -> Dict[str, str]:
        return dict(self._request.query_params)

    def get_path_params(self) -> Dict[str, Any]:
        return dict(self._request.path_params)

    def describe(self) -> Dict[str, Any]:
        """Short summary used in error details."""
        summary: Dict[str, Any] = {"method": self.method, "path": self.path}
        request_id = getattr(self._request.state, "request_id", None)
        if request_id:
            summary["requestId"] = request_id
        service_method = getattr(self._request.state, "service_method", None)
        if service_method:
            summary["serviceMethod"] = service_method
        return summary


class MutableRequestHelper(RequestHelper):
    """RequestHelper that middlewares may use to rewrite request headers."""

    def set_header(self, header_name: str, header_value: str) -> None:
        MutableHeaders(scope=self._request.scope)[header_name] = header_value


def error_payload(
    error: BaseException,
    details: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Build {errorCode, errorMsg, errorDetails?, requestId} for an exception."""
    code = getattr(error, "error_code", None) or type(error).__name__
    message = getattr(error, "message", None) or str(error) or type(error).__name__
    payload: Dict[str, Any] = {"errorCode": code, "errorMsg": message}
    error_details: Dict[str, Any] = {}
    if isinstance(error, DataServicesError) and error.context:
        error_details.update(error.context)
    if details:
        error_details.update(details)
    if error_details:
        payload["errorDetails"] = error_details
    payload["requestId"] = request_id_var.get("")
    return payload


class ResponseHelper:
    """
    Builds the single response for one request.

    Once any send method has been called, `headers_sent` is True and
    `response` holds the Starlette response to return.
    """

    def __init__(self):
        self.headers: Dict[str, str] = {}
        self.response: Optional[Response] = None

    @property
    def headers_sent(self) -> bool:
        return self.response is not None

    def set_header(self, header_name: str, header_value: str) -> None:
        self.headers[header_name] = header_value
        if self.response is not None:
            self.response.headers[header_name] = header_value

    def send(self, content: Any, status_code: int = 200) -> Response:
        """Send a JSON body. Later calls replace nothing once a response exists."""
        if self.response is not None:
            return self.response
        self.response = JSONResponse(
            status_code=status_code,
            content=jsonable_encoder(content),
            headers=self.headers,
        )
        return self.response

    def ok(self, content: Any) -> Response:
        return self.send(content, 200)

    def bad_request(self, error: BaseException) -> Response:
        return self.respond_with_error(error, status_code=400)

    def not_found(self, message: str = "The requested resource was not found.") -> Response:
        return self.send(
            {
                "errorCode": "NotFound",
                "errorMsg": message,
                "requestId": request_id_var.get(""),
            },
            404,
        )

    def respond_with_error(
        self,
        error: BaseException,
        details: Optional[Dict[str, Any]] = None,
        status_code: int = 500,
    ) -> Response:
        return self.send(error_payload(error, details), status_code)

    def respond_with_error_details(
        self,
        error_code: str,
        error_msg: str,
        details: Optional[Dict[str, Any]] = None,
        status_code: int = 400,
    ) -> Response:
        payload: Dict[str, Any] = {"errorCode": error_code, "errorMsg": error_msg}
        if details:
            payload["errorDetails"] = details
        payload["requestId"] = request_id_var.get("")
        return self.send(payload, status_code)
