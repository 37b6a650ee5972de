"""
Data Services — Middleware Package
====================================

Two kinds of middleware live here:

Application middleware (Starlette, applied to every request):
    Request → [Request Context] → [GZip] → [CORS] → Route
    - request_context.py:  X-Request-ID header, ContextVar, one access line
                           naming the dispatched Service.method

Route middleware (named in an operation's `serviceMiddlewares`):
    - standard.py:              the built-in STANDARD group (cors/json/url/cookie)
    - **/*_middleware.py:       user middleware classes, discovered at startup
"""
