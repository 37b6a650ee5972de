"""
Data Services — Router Builder Tests
======================================

What we test:
    ✅ Every route definition failure raises RouteDefinitionError
    ✅ A bad service file aborts ApiServer construction (before listening)
    ✅ A dangling $ref aborts ApiServer construction
    ✅ Path normalization
    ✅ Result normalization into the response envelope
"""

import pytest

from data_services.exceptions import OpenApiDefinitionError, RouteDefinitionError
from data_services.middleware.standard import StandardMiddlewares
from data_services.router import build_route_entries, normalize_result, normalize_route_path
from data_services.server import ApiServer, ServerOptions


class Things:
    def list_things(self, request_helper, response_helper):
        return []


def _document(operation):
    return {"paths": {"/things": {"get": operation}}}


SERVICES = {"Things": Things()}
MIDDLEWARES = {"STANDARD": StandardMiddlewares()}


class TestBuildRouteEntries:
    """Tests for turning the document into RouteEntry values."""

    def test_valid_entry(self):
        entries = build_route_entries(
            _document({"serviceMethod": "Things.list_things", "serviceMiddlewares": ["STANDARD.json"]}),
            SERVICES,
            MIDDLEWARES,
        )

        assert len(entries) == 1
        entry = entries[0]
        assert (entry.method, entry.path, entry.route_path) == ("get", "/things", "/things")
        assert (entry.service_name, entry.method_name) == ("Things", "list_things")
        assert [(m.class_name, m.method_name) for m in entry.middlewares] == [("STANDARD", "json")]

    def test_missing_service_method(self):
        with pytest.raises(RouteDefinitionError) as exc_info:
            build_route_entries(_document({"description": "no binding"}), SERVICES, MIDDLEWARES)

        assert exc_info.value.message.startswith("GET /things was defined in the Open API Definition")
        assert "serviceMethod" in exc_info.value.message

    @pytest.mark.parametrize("reference", ["Things", "Things.list_things.extra", ".list_things", 42])
    def test_malformed_service_method(self, reference):
        with pytest.raises(RouteDefinitionError, match="format"):
            build_route_entries(_document({"serviceMethod": reference}), SERVICES, MIDDLEWARES)

    @pytest.mark.parametrize("reference", ["Missing.list_things", "Things.missing"])
    def test_unknown_service_or_method(self, reference):
        with pytest.raises(RouteDefinitionError, match="could not find a loaded serviceMethod"):
            build_route_entries(_document({"serviceMethod": reference}), SERVICES, MIDDLEWARES)

    def test_malformed_middleware(self):
        operation = {"serviceMethod": "Things.list_things", "serviceMiddlewares": ["json"]}

        with pytest.raises(RouteDefinitionError, match="MiddlewareClassName"):
            build_route_entries(_document(operation), SERVICES, MIDDLEWARES)

    def test_unknown_middleware(self):
        operation = {"serviceMethod": "Things.list_things", "serviceMiddlewares": ["STANDARD.xml"]}

        with pytest.raises(RouteDefinitionError, match="could not find a loaded middleware"):
            build_route_entries(_document(operation), SERVICES, MIDDLEWARES)

    def test_non_operation_keys_ignored(self):
        document = {"paths": {"/things": {"parameters": [], "summary": "x"}}}
        assert build_route_entries(document, SERVICES, MIDDLEWARES) == []


class TestServerConstructionFailures:
    """Route problems abort ApiServer construction."""

    def test_route_without_service_method_aborts_startup(self, write_component, component_dir):
        write_component(
            "unbound_service.py",
            '''
            class Unbound:
                def __init__(self, context):
                    pass

                def handler(self, request_helper, response_helper):
                    """
                    @openapi
                    /unbound:
                      get:
                        description: forgot the binding
                    """
            ''',
        )
        listened = []

        with pytest.raises(RouteDefinitionError):
            ApiServer(
                ServerOptions(
                    service_locations=[str(component_dir / "*_service.py")],
                    on_listening=lambda: listened.append(True),
                )
            )
        assert listened == []

    def test_dangling_reference_aborts_startup(self, write_component, component_dir):
        write_component(
            "dangling_service.py",
            '''
            class Dangling:
                def __init__(self, context):
                    pass

                def handler(self, request_helper, response_helper):
                    """
                    @openapi
                    /dangling:
                      get:
                        serviceMethod: Dangling.handler
                        parameters:
                          - $ref: '#/components/parameters/Nowhere'
                    """
            ''',
        )

        with pytest.raises(OpenApiDefinitionError, match="#/components/parameters/Nowhere"):
            ApiServer(ServerOptions(service_locations=[str(component_dir / "*_service.py")]))


class TestNormalization:
    """Tests for path and result normalization."""

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("/data", "/data"),
            ("/data/", "/data"),
            ("/items/{ id }", "/items/{id}"),
            ("items/{id}/parts/{part}/", "/items/{id}/parts/{part}"),
            ("/", "/"),
        ],
    )
    def test_route_path(self, raw, expected):
        assert normalize_route_path(raw) == expected

    def test_mapping_gains_msg_and_status(self):
        assert normalize_result({"data": [1]}, "get", "/data") == {
            "data": [1],
            "msg": "GET request to /data succeeded.",
            "status": True,
        }

    def test_existing_msg_and_status_kept(self):
        result = normalize_result({"msg": "custom", "status": False}, "POST", "/data")
        assert result == {"msg": "custom", "status": False}

    def test_non_mapping_wrapped(self):
        result = normalize_result([1, 2], "GET", "/x")
        assert result["data"] == [1, 2]
        assert result["status"] is True

    def test_none_gives_bare_envelope(self):
        assert normalize_result(None, "DELETE", "/x") == {
            "msg": "DELETE request to /x succeeded.",
            "status": True,
        }
