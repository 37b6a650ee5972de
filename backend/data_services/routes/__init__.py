# Routes package init
"""
Data Services — Fixed Routes Package
======================================

Routes that exist on every server regardless of the discovered services.
Service routes are generated from the OpenAPI document (see router.py).

Route Inventory:
    - docs.py:  GET /swagger/{challenge}/api-docs.json
                GET /swagger/{challenge}/api-docs
"""
