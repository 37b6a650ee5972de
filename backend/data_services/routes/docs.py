"""
Data Services — API Documentation Routes
==========================================

What:  Serves the synthesized OpenAPI document and a Swagger UI page for it.
How:   Both routes take a `{challenge}` path segment that must equal the
       configured docs_challenge. This is a shared path string kept for
       compatibility with existing clients, not access control.
Who:   Mounted by ApiServer on every application.

Endpoints:
    GET /swagger/{challenge}/api-docs.json   → the OpenAPI document
    GET /swagger/{challenge}/api-docs        → Swagger UI (filter enabled)

Challenge mismatch (both routes):
    HTTP 401 {"errorCode": 401, "errorMsg": "unauthorized access"}
"""

import logging
from typing import Any, Callable, Dict

from fastapi import APIRouter
from fastapi.openapi.docs import get_swagger_ui_html
from fastapi.responses import JSONResponse
from starlette.responses import Response

logger = logging.getLogger(__name__)


def _unauthorized() -> JSONResponse:
    return JSONResponse(
        status_code=401,
        content={"errorCode": 401, "errorMsg": "unauthorized access"},
    )


def create_docs_router(
    get_document: Callable[[], Dict[str, Any]],
    challenge: str,
    title: str = "API Docs",
) -> APIRouter:
    """
    Build the documentation router.

    Args:
        get_document: Returns the current OpenAPI document
        challenge:    Expected value of the {challenge} path segment
        title:        Page title of the Swagger UI
    """
    expected = challenge
    router = APIRouter(tags=["Docs"], include_in_schema=False)

    @router.get("/swagger/{challenge}/api-docs.json")
    async def api_docs_json(challenge: str) -> Response:
        if challenge != expected:
            logger.info("Rejected api-docs.json request with wrong challenge")
            return _unauthorized()
        return JSONResponse(content=get_document())

    @router.get("/swagger/{challenge}/api-docs")
    async def api_docs_ui(challenge: str) -> Response:
        if challenge != expected:
            logger.info("Rejected api-docs request with wrong challenge")
            return _unauthorized()
        return get_swagger_ui_html(
            openapi_url=f"/swagger/{challenge}/api-docs.json",
            title=title,
            swagger_ui_parameters={"filter": True},
        )

    return router
