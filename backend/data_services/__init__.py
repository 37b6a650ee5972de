"""
Data Services — Application Package
=====================================

What: A convention-driven HTTP API harness plus the sample data service it
      ships with.
Who:  Run with `python -m data_services`; imported by tests as `data_services`.

Architecture Note:

    ┌─────────────────────────────────────┐
    │  ApiServer (lifecycle, uvicorn)     │  ← server.py, main.py
    ├─────────────────────────────────────┤
    │  Router + OpenAPI document          │  ← router.py, openapi.py, routes/
    ├─────────────────────────────────────┤
    │  Loader (services, middleware,      │  ← loader.py, middleware/
    │  injectables)                       │
    ├─────────────────────────────────────┤
    │  Services                           │  ← services/**/*_service.py
    ├─────────────────────────────────────┤
    │  Data access (SQLite via SQLAlchemy)│  ← utils/data_store.py, database.py
    └─────────────────────────────────────┘

    Routes are not written by hand: each service documents its endpoints in
    @openapi docstring blocks, and the router binds every documented
    operation to the `ClassName.method` named by its serviceMethod.
"""

__version__ = "1.0.0"
