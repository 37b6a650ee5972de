"""
Data Services — Built-in Route Middleware
===========================================

What:  The STANDARD middleware group, referenced from an operation as
       `STANDARD.cors`, `STANDARD.json`, `STANDARD.url` or `STANDARD.cookie`.
How:   Each operation has the route middleware signature
           op(request_helper, response_helper, operation)
       and may be sync or async. Parsed values are stored on the request
       helper, where later middleware and the service method read them.
Who:   Registered by ApiServer under the name "STANDARD" before user
       middleware is loaded.
"""

import logging
from typing import Any, Dict

from data_services.http.helpers import RequestHelper, ResponseHelper

logger = logging.getLogger(__name__)

STANDARD_NAME = "STANDARD"


class StandardMiddlewares:
    """
    Built-in middleware operations.

    Args:
        origin: Value for Access-Control-Allow-Origin set by `cors`.
    """

    def __init__(self, origin: str = "*"):
        self.origin = origin

    def cors(
        self,
        request_helper: RequestHelper,
        response_helper: ResponseHelper,
        operation: Dict[str, Any],
    ) -> None:
        response_helper.set_header("Access-Control-Allow-Origin", self.origin)

    async def json(
        self,
        request_helper: RequestHelper,
        response_helper: ResponseHelper,
        operation: Dict[str, Any],
    ) -> None:
        """Parse an application/json body. Other content types are left alone."""
        if request_helper.content_type != "application/json":
            return
        await request_helper.load_payload()

    async def url(
        self,
        request_helper: RequestHelper,
        response_helper: ResponseHelper,
        operation: Dict[str, Any],
    ) -> None:
        """Parse an application/x-www-form-urlencoded body into a dict."""
        if request_helper.content_type != "application/x-www-form-urlencoded":
            return
        form = await request_helper.form()
        request_helper.set_payload(dict(form))

    def cookie(
        self,
        request_helper: RequestHelper,
        response_helper: ResponseHelper,
        operation: Dict[str, Any],
    ) -> None:
        request_helper.set_cookies(request_helper.raw_request.cookies)
        logger.debug(
            "Parsed %d cookie(s) for %s", len(request_helper.cookies), request_helper.path
        )
