"""
Data Services — API Endpoint Tests
====================================

What:  End-to-end tests through the ASGI app (no socket).
How:   httpx AsyncClient + ASGITransport; the seed endpoint is an
       httpx.MockTransport (see conftest.py).

What we test:
    ✅ GET /data paging and response envelope
    ✅ POST /data reseeding, body validation, seed failure → 400
    ✅ Validation errors → 400 ValidationError with details
    ✅ Unknown route → 404 NotFound; X-Request-ID on every response
    ✅ Access log line names the dispatched Service.method
    ✅ Docs routes and the challenge segment
    ✅ Service errors (sync and async) → 400, middleware short-circuit
"""

import logging

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from data_services.server import ApiServer, ServerOptions

from conftest import make_records


class TestFetchData:
    """GET /data"""

    @pytest.mark.asyncio
    async def test_second_page(self, test_client, data_store):
        for record in make_records(45):
            await data_store.insert_row(record)

        response = await test_client.get("/data", params={"page": 2})

        assert response.status_code == 200
        body = response.json()
        assert body["status"] is True
        assert body["msg"] == "GET request to /data succeeded."
        assert [row["id"] for row in body["data"]] == list(range(31, 46))
        assert set(body["data"][0]) == {"id", "postId", "name", "email", "body"}

    @pytest.mark.asyncio
    async def test_default_page_is_first(self, test_client, data_store):
        for record in make_records(35):
            await data_store.insert_row(record)

        response = await test_client.get("/data")

        assert [row["id"] for row in response.json()["data"]] == list(range(1, 31))

    @pytest.mark.asyncio
    async def test_empty_table(self, test_client):
        response = await test_client.get("/data")

        assert response.status_code == 200
        assert response.json()["data"] == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("page", ["0", "-3", "abc"])
    async def test_invalid_page(self, test_client, page):
        response = await test_client.get("/data", params={"page": page})

        assert response.status_code == 400
        body = response.json()
        assert body["errorCode"] == "ValidationError"
        errors = body["errorDetails"]["validationErrors"]
        assert errors[0]["name"] == "page"
        request_info = body["errorDetails"]["request"]
        assert (request_info["method"], request_info["path"]) == ("GET", "/data")
        assert request_info["serviceMethod"] == "InsertData.fetch_insert_data"
        assert request_info["requestId"] == body["requestId"]


class TestCreateData:
    """POST /data"""

    @pytest.mark.asyncio
    async def test_reseed(self, test_client, data_store, seed_transport):
        response = await test_client.post("/data", json={})

        assert response.status_code == 200
        body = response.json()
        assert body == {
            "status": True,
            "msg": "All Data has been Inserted.",
            "data": {"fetched": 45, "inserted": 45, "failed": 0},
        }
        assert len(seed_transport.requests) == 1
        assert len(await data_store.fetch_page(2)) == 15

    @pytest.mark.asyncio
    async def test_reseed_twice(self, test_client, data_store):
        first = await test_client.post("/data", json={})
        second = await test_client.post("/data", json={})

        assert first.status_code == second.status_code == 200
        # 90 rows now: pages 1-3 full
        assert len(await data_store.fetch_page(3)) == 30

    @pytest.mark.asyncio
    async def test_missing_body(self, test_client, seed_transport):
        response = await test_client.post("/data")

        assert response.status_code == 400
        assert response.json()["errorCode"] == "ValidationError"
        assert seed_transport.requests == []

    @pytest.mark.asyncio
    async def test_body_must_be_object(self, test_client):
        response = await test_client.post("/data", json=[1, 2])

        assert response.status_code == 400
        assert response.json()["errorCode"] == "ValidationError"

    @pytest.mark.asyncio
    async def test_malformed_json(self, test_client):
        response = await test_client.post(
            "/data", content=b"{not json", headers={"Content-Type": "application/json"}
        )

        assert response.status_code == 400
        assert response.json()["errorCode"] == "ValidationError"

    @pytest.mark.asyncio
    async def test_non_json_media_type_rejected(self, test_client, seed_transport):
        response = await test_client.post(
            "/data", content=b"{}", headers={"Content-Type": "text/plain"}
        )

        assert response.status_code == 400
        errors = response.json()["errorDetails"]["validationErrors"]
        assert errors[0]["name"] == "Content-Type"
        assert "text/plain" in errors[0]["message"]
        assert seed_transport.requests == []

    @pytest.mark.asyncio
    async def test_seed_failure_is_bad_request(self, test_client, seed_transport):
        seed_transport.status_code = 500

        response = await test_client.post("/data", json={})

        assert response.status_code == 400
        body = response.json()
        assert body["errorCode"] == "HTTPStatusError"
        assert body["errorMsg"]


class TestCommonBehaviour:
    """Behaviour shared by every route."""

    @pytest.mark.asyncio
    async def test_unknown_route(self, test_client):
        response = await test_client.get("/nope")

        assert response.status_code == 404
        assert response.json()["errorCode"] == "NotFound"

    @pytest.mark.asyncio
    async def test_method_not_allowed(self, test_client):
        response = await test_client.delete("/data")

        assert response.status_code == 405

    @pytest.mark.asyncio
    async def test_request_id_header(self, test_client):
        generated = await test_client.get("/data")
        echoed = await test_client.get("/data", headers={"X-Request-ID": "abc123"})

        assert generated.headers["X-Request-ID"]
        assert echoed.headers["X-Request-ID"] == "abc123"

    @pytest.mark.asyncio
    async def test_error_payload_carries_request_id(self, test_client):
        response = await test_client.get(
            "/data", params={"page": "0"}, headers={"X-Request-ID": "rid-1"}
        )

        assert response.json()["requestId"] == "rid-1"

    @pytest.mark.asyncio
    async def test_cors_header(self, test_client):
        response = await test_client.get("/data", headers={"Origin": "http://example.com"})

        assert response.headers["access-control-allow-origin"] == "*"

    @pytest.mark.asyncio
    async def test_access_log_names_service_method(self, test_client, caplog):
        caplog.set_level(logging.INFO, logger="data_services.access")

        await test_client.get("/data", params={"page": 1}, headers={"X-Request-ID": "log-1"})
        await test_client.get("/nope")

        lines = [r.getMessage() for r in caplog.records if r.name == "data_services.access"]
        assert len(lines) == 2
        assert lines[0].startswith("GET /data?page=1 → InsertData.fetch_insert_data 200 ")
        assert "[log-1]" in lines[0]
        assert lines[1].startswith("GET /nope → - 404 ")


class TestDocs:
    """Swagger document and UI."""

    @pytest.mark.asyncio
    async def test_document(self, test_client):
        response = await test_client.get("/swagger/12345/api-docs.json")

        assert response.status_code == 200
        document = response.json()
        assert document["openapi"] == "3.0.1"
        assert set(document["paths"]["/data"]) == {"get", "post"}

    @pytest.mark.asyncio
    async def test_ui(self, test_client):
        response = await test_client.get("/swagger/12345/api-docs")

        assert response.status_code == 200
        assert "text/html" in response.headers["content-type"]
        assert "/swagger/12345/api-docs.json" in response.text

    @pytest.mark.asyncio
    @pytest.mark.parametrize("path", ["/swagger/wrong/api-docs.json", "/swagger/wrong/api-docs"])
    async def test_wrong_challenge(self, test_client, path):
        response = await test_client.get(path)

        assert response.status_code == 401
        assert response.json() == {"errorCode": 401, "errorMsg": "unauthorized access"}


# ══════════════════════════════════════════════════════════════════════════
# Custom Components
# ══════════════════════════════════════════════════════════════════════════

CUSTOM_SERVICE = '''
class Custom:
    def __init__(self, context):
        self.calls = []

    def explode(self, request_helper, response_helper):
        """
        @openapi
        /explode:
          get:
            serviceMethod: Custom.explode
        """
        self.calls.append("explode")
        raise ValueError("boom")

    async def explode_later(self, request_helper, response_helper):
        """
        @openapi
        /explode-later:
          get:
            serviceMethod: Custom.explode_later
        """
        raise KeyError("missing")

    def guarded(self, request_helper, response_helper):
        """
        @openapi
        /guarded:
          get:
            serviceMethod: Custom.guarded
            serviceMiddlewares:
              - Guard.deny
              - Guard.tag
        """
        self.calls.append("guarded")
        return {"data": "should not happen"}

    def tagged(self, request_helper, response_helper):
        """
        @openapi
        /tagged/{ item }:
          get:
            serviceMethod: Custom.tagged
            serviceMiddlewares:
              - Guard.tag
              - STANDARD.cors
        """
        return [request_helper.get_path_params()["item"]]

    def nothing(self, request_helper, response_helper):
        """
        @openapi
        /nothing:
          post:
            serviceMethod: Custom.nothing
            serviceMiddlewares:
              - STANDARD.url
        """
        self.calls.append(request_helper.get_payload())

    def jar(self, request_helper, response_helper):
        """
        @openapi
        /jar:
          get:
            serviceMethod: Custom.jar
            serviceMiddlewares:
              - STANDARD.cookie
        """
        return {"data": request_helper.cookies}

    def custom(self, request_helper, response_helper):
        """
        @openapi
        /custom:
          get:
            serviceMethod: Custom.custom
        """
        response_helper.send({"handled": "by service"}, 202)
'''

GUARD_MIDDLEWARE = '''
class Guard:
    def __init__(self, context):
        self.seen = []

    async def deny(self, request_helper, response_helper, operation):
        response_helper.send({"errorCode": "Forbidden", "errorMsg": "denied"}, 403)

    def tag(self, request_helper, response_helper, operation):
        self.seen.append(operation["serviceMethod"])
        response_helper.set_header("X-Tagged", "yes")
'''


@pytest_asyncio.fixture
async def custom_server(write_component, component_dir):
    write_component("custom_service.py", CUSTOM_SERVICE)
    write_component("guard_middleware.py", GUARD_MIDDLEWARE)
    server = ApiServer(
        ServerOptions(
            service_locations=[str(component_dir / "*_service.py")],
            middleware_locations=[str(component_dir / "*_middleware.py")],
        )
    )
    transport = ASGITransport(app=server.app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield server, client


class TestCustomComponents:
    """Dispatch through discovered services and middleware."""

    @pytest.mark.asyncio
    async def test_sync_service_error_is_bad_request(self, custom_server):
        server, client = custom_server

        response = await client.get("/explode")

        assert response.status_code == 400
        body = response.json()
        assert body["errorCode"] == "ValueError"
        assert body["errorMsg"] == "boom"
        assert server.loader.services["Custom"].calls == ["explode"]

    @pytest.mark.asyncio
    async def test_async_service_error_is_bad_request(self, custom_server):
        _, client = custom_server

        response = await client.get("/explode-later")

        assert response.status_code == 400
        assert response.json()["errorCode"] == "KeyError"

    @pytest.mark.asyncio
    async def test_middleware_short_circuits(self, custom_server):
        server, client = custom_server

        response = await client.get("/guarded")

        assert response.status_code == 403
        assert response.json() == {"errorCode": "Forbidden", "errorMsg": "denied"}
        assert server.loader.services["Custom"].calls == []
        # The chain stopped before Guard.tag
        assert server.loader.middlewares["Guard"].seen == []

    @pytest.mark.asyncio
    async def test_middleware_headers_and_path_params(self, custom_server):
        server, client = custom_server

        response = await client.get("/tagged/widget")

        assert response.status_code == 200
        assert response.headers["X-Tagged"] == "yes"
        assert response.headers["Access-Control-Allow-Origin"] == "*"
        assert response.json() == {
            "data": ["widget"],
            "msg": "GET request to /tagged/widget succeeded.",
            "status": True,
        }
        assert server.loader.middlewares["Guard"].seen == ["Custom.tagged"]

    @pytest.mark.asyncio
    async def test_none_result_and_url_middleware(self, custom_server):
        server, client = custom_server

        response = await client.post("/nothing", data={"a": "1", "b": ""})

        assert response.status_code == 200
        assert response.json() == {"msg": "POST request to /nothing succeeded.", "status": True}
        assert server.loader.services["Custom"].calls == [{"a": "1", "b": ""}]

    @pytest.mark.asyncio
    async def test_cookie_middleware_keeps_browser_cookies(self, custom_server):
        _, client = custom_server

        response = await client.get("/jar", headers={"Cookie": "a=1; b=x y; c=3"})

        assert response.status_code == 200
        assert response.json()["data"] == {"a": "1", "b": "x y", "c": "3"}

    @pytest.mark.asyncio
    async def test_service_may_send_its_own_response(self, custom_server):
        _, client = custom_server

        response = await client.get("/custom")

        assert response.status_code == 202
        assert response.json() == {"handled": "by service"}

    @pytest.mark.asyncio
    async def test_custom_document_served(self, custom_server):
        _, client = custom_server

        document = (await client.get("/swagger/12345/api-docs.json")).json()

        assert "/tagged/{ item }" in document["paths"]
