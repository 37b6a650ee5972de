# Services package init
"""
Data Services — Services Package
==================================

Service classes found here through the `*_service.py` naming convention are
loaded at startup. Each one documents its routes in @openapi docstring blocks.

Service Inventory:
    - data/data_service.py:  InsertData (POST /data, GET /data)
"""
