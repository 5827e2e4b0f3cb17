"""Tests for perch.server.dispatcher — the request pipeline end to end."""

import json
import logging
from pathlib import Path
from typing import Any

import pytest

from perch.app import App
from perch.config import AppConfig
from perch.testing import TestClient

FLOW_LOGIC = """
from perch.actions import Forward, Missing, Redirect
from perch.context import get_context
from perch.errors import HTTPError


class Collection:
    def __init__(self, context):
        self.context = context

    def one(self):
        if self.context.params["id"] == "0":
            return Missing("No flow 0", "flowMissing")
        return {"id": self.context.params["id"], "user": self.context.state.get("user")}

    def list(self):
        return self.context.forward("targets", "list")

    def ghost(self):
        return Forward("ghosts", "list")

    def nohandle(self):
        return Forward("targets", "nope")

    def away(self):
        return Redirect("/targets", 301)

    def crash(self):
        raise ValueError("handler exploded")

    def teapot(self):
        raise HTTPError(status=418, detail="short and stout", headers=(("Retry-After", "5"),))

    def plain(self):
        self.context.response.content_type = "text/plain"
        return "explicit"

    def current(self):
        return {"same": get_context() is self.context}

    def ping(self):
        return self.context.forward("loop", "pong")
"""

TARGETS_LOGIC = """
CALLS = []


class Collection:
    def __init__(self, context):
        self.context = context

    async def list(self):
        CALLS.append(self.context.handle_name)
        return {"from": self.context.forwards, "calls": len(CALLS)}
"""

LOOP_LOGIC = """
class Collection:
    def __init__(self, context):
        self.context = context

    def pong(self):
        return self.context.forward("flows", "ping")
"""

# Static paths must precede "/:id"; the first matching route wins.
FLOW_ENDPOINTS = {
    "get /": "list",
    "get /ghost": "ghost",
    "get /nohandle": "nohandle",
    "get /away": "away",
    "get /crash": "crash",
    "get /teapot": "teapot",
    "get /plain": "plain",
    "get /current": "current",
    "get /ping": "ping",
    "get /missing-method": "search",
    "get /:id": "one",
}

FLOW_MANIFEST = {"endpointsDefault": False, "endpoints": FLOW_ENDPOINTS}


@pytest.fixture
def app(tmp_path: Path, make_collection) -> App:
    make_collection("widgets")
    make_collection("flows", logic=FLOW_LOGIC, manifest=FLOW_MANIFEST)
    make_collection("targets", logic=TARGETS_LOGIC)
    make_collection(
        "loop",
        logic=LOOP_LOGIC,
        manifest={"endpointsDefault": False, "endpoints": {"get /pong": "pong"}},
    )
    return App(AppConfig(root=tmp_path, max_forwards=4))


class TestWidgets:
    async def test_list(self, app: App) -> None:
        async with TestClient(app) as client:
            response = await client.get("/widgets")
        assert response.status == 200
        assert response.content_type == "application/json; charset=utf-8"
        assert json.loads(response.body) == [{"id": "1"}, {"id": "2"}]

    async def test_one(self, app: App) -> None:
        async with TestClient(app) as client:
            response = await client.get("/widgets/7")
        assert json.loads(response.body) == {"id": "7"}

    async def test_param_is_decoded(self, app: App) -> None:
        async with TestClient(app) as client:
            response = await client.get("/widgets/a%20b")
        assert json.loads(response.body) == {"id": "a b"}

    async def test_bad_escape_is_400(self, app: App) -> None:
        async with TestClient(app) as client:
            response = await client.get("/widgets/%zz")
        assert response.status == 400
        assert json.loads(response.body)["message"] == "Failed to decode param '%zz'"

    async def test_scope_without_raw_path_decodes_once(self, app: App) -> None:
        sent: list[dict[str, Any]] = []

        async def receive() -> dict[str, Any]:
            return {"type": "http.request", "body": b"", "more_body": False}

        async def send(message: dict[str, Any]) -> None:
            sent.append(message)

        scope = {
            "type": "http",
            "method": "GET",
            "path": "/widgets/100%",
            "query_string": b"",
            "headers": [],
        }
        await app(scope, receive, send)
        assert sent[0]["status"] == 200
        assert json.loads(sent[1]["body"]) == {"id": "100%"}

    async def test_create_reads_body_and_sets_status(self, app: App) -> None:
        async with TestClient(app) as client:
            response = await client.post("/widgets", json={"name": "sprocket"})
        assert response.status == 201
        assert json.loads(response.body) == {"name": "sprocket"}

    async def test_update(self, app: App) -> None:
        async with TestClient(app) as client:
            response = await client.put("/widgets/3")
        assert json.loads(response.body) == {"updated": "3"}

    async def test_suppressed_delete(self, app: App) -> None:
        async with TestClient(app) as client:
            response = await client.delete("/widgets/3")
        assert response.status == 200
        assert response.body == b""
        assert response.content_type is None

    async def test_head_has_headers_but_no_body(self, app: App) -> None:
        async with TestClient(app) as client:
            response = await client.head("/widgets")
        assert response.status == 200
        assert response.body == b""
        assert response.content_type == "application/json; charset=utf-8"


class TestUnmatched:
    async def test_default_is_501(self, app: App) -> None:
        async with TestClient(app) as client:
            response = await client.get("/nowhere?x=1")
        assert response.status == 501
        assert json.loads(response.body) == {
            "name": "NotImplemented",
            "status": 501,
            "message": "Resource or collection '/nowhere?x=1' not implemented in API",
            "code": "NotImplemented",
        }

    async def test_wrong_method_is_501(self, app: App) -> None:
        async with TestClient(app) as client:
            response = await client.request("PATCH", "/widgets/1")
        assert response.status == 501

    async def test_custom_handler(self, app: App) -> None:
        @app.not_implemented
        def fallback(ctx):
            ctx.response.status = 404
            return {"missing": ctx.request.path}

        async with TestClient(app) as client:
            response = await client.get("/nowhere")
        assert response.status == 404
        assert json.loads(response.body) == {"missing": "/nowhere"}


class TestResults:
    async def test_missing_is_404_with_code(self, app: App) -> None:
        async with TestClient(app) as client:
            response = await client.get("/flows/0")
        assert response.status == 404
        body = json.loads(response.body)
        assert body["message"] == "No flow 0"
        assert body["code"] == "flowMissing"

    async def test_redirect(self, app: App) -> None:
        async with TestClient(app) as client:
            response = await client.get("/flows/away")
        assert response.status == 301
        assert response.header("location") == "/targets"
        assert response.body == b""

    async def test_explicit_content_type_wins_over_accept(self, app: App) -> None:
        async with TestClient(app) as client:
            response = await client.get("/flows/plain", headers={"Accept": "application/json"})
        assert response.content_type == "text/plain; charset=utf-8"
        assert response.text == "explicit"

    async def test_context_var_is_current_context(self, app: App) -> None:
        async with TestClient(app) as client:
            response = await client.get("/flows/current")
        assert json.loads(response.body) == {"same": True}


class TestForward:
    async def test_forward_renders_target_once(self, app: App) -> None:
        async with TestClient(app) as client:
            response = await client.get("/flows")
        assert response.status == 200
        body = json.loads(response.body)
        assert body["from"] == [["flows", "list"], ["targets", "list"]]
        assert body["calls"] == 1

    async def test_missing_collection(self, app: App) -> None:
        async with TestClient(app) as client:
            response = await client.get("/flows/ghost")
        assert response.status == 500
        body = json.loads(response.body)
        assert body["code"] == "forwardCollectionNotFound"
        assert body["message"] == "Collection ghosts not found for forward"

    async def test_missing_handle(self, app: App) -> None:
        async with TestClient(app) as client:
            response = await client.get("/flows/nohandle")
        body = json.loads(response.body)
        assert body["code"] == "forwardCollectionNotFound"
        assert body["message"] == "Handle nope not found for forward"

    async def test_cycle_is_flagged_then_stopped(self, app: App, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING, logger="perch.server"):
            async with TestClient(app) as client:
                response = await client.get("/flows/ping")
        assert response.status == 500
        assert json.loads(response.body)["code"] == "forwardLimitExceeded"
        assert any("Forward cycle detected" in r.message for r in caplog.records)


class TestErrors:
    async def test_handler_exception_is_500(self, app: App, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.ERROR, logger="perch.server"):
            async with TestClient(app) as client:
                response = await client.get("/flows/crash")
        assert response.status == 500
        body = json.loads(response.body)
        assert body["name"] == "InternalServerError"
        assert body["message"] == "handler exploded"
        assert "stack" not in body
        assert any(r.levelno == logging.ERROR for r in caplog.records)

    async def test_debug_adds_stack(self, tmp_path: Path, make_collection) -> None:
        make_collection("flows", logic=FLOW_LOGIC, manifest=FLOW_MANIFEST)
        app = App(AppConfig(root=tmp_path, debug=True))
        async with TestClient(app) as client:
            response = await client.get("/flows/crash")
        assert "ValueError: handler exploded" in json.loads(response.body)["stack"]

    async def test_http_error_status_and_headers(self, app: App) -> None:
        async with TestClient(app) as client:
            response = await client.get("/flows/teapot", headers={"Accept": "text/plain"})
        assert response.status == 418
        assert response.header("retry-after") == "5"
        assert response.text == "418: short and stout"

    async def test_missing_handler_method(self, app: App) -> None:
        async with TestClient(app) as client:
            response = await client.get("/flows/missing-method")
        assert response.status == 500
        assert json.loads(response.body)["message"] == (
            "Not found handler 'search' in collection's logic file 'flows'"
        )

    async def test_not_acceptable(self, app: App) -> None:
        async with TestClient(app) as client:
            response = await client.get("/widgets", headers={"Accept": "image/png"})
        assert response.status == 406
        assert response.content_type == "text/plain; charset=utf-8"
        assert response.text.startswith("406: ")

    async def test_collection_unloaded_after_match(self, app: App) -> None:
        async with TestClient(app) as client:
            app.loader.remove("widgets")
            response = await client.get("/widgets")
        assert response.status == 500
        assert json.loads(response.body)["message"] == "Collection 'widgets' is not loaded"

    async def test_failing_formatter_falls_back_to_plain_500(
        self, tmp_path: Path, make_collection
    ) -> None:
        make_collection("widgets")
        app = App(AppConfig(root=tmp_path))

        @app.formatter("application/json; q=0.9")
        def broken(ctx, body):
            raise RuntimeError("formatter exploded")

        async with TestClient(app) as client:
            response = await client.get("/widgets")
        assert response.status == 500
        assert response.text == "Internal Server Error"


class TestMiddleware:
    async def test_runs_in_order_and_continues(self, app: App) -> None:
        order: list[str] = []

        @app.middleware
        def first(ctx):
            order.append("first")
            ctx.state["user"] = "ada"

        @app.middleware
        async def second(ctx):
            order.append(f"second:{ctx.collection_name}.{ctx.handle_name}")

        async with TestClient(app) as client:
            response = await client.get("/flows/5")
        assert order == ["first", "second:flows.one"]
        assert json.loads(response.body) == {"id": "5", "user": "ada"}

    async def test_short_circuit(self, app: App) -> None:
        @app.middleware
        def deny(ctx):
            if ctx.request.headers.get("x-token") != "secret":
                return ctx.not_found("Who are you?")

        async with TestClient(app) as client:
            denied = await client.get("/widgets")
            allowed = await client.get("/widgets", headers={"X-Token": "secret"})
        assert denied.status == 404
        assert json.loads(denied.body)["message"] == "Who are you?"
        assert allowed.status == 200

    async def test_short_circuit_value_is_formatted(self, app: App) -> None:
        app.use(lambda ctx: {"intercepted": True})
        async with TestClient(app) as client:
            response = await client.get("/nowhere")
        assert response.status == 200
        assert json.loads(response.body) == {"intercepted": True}

    async def test_middleware_error(self, app: App) -> None:
        def boom(ctx):
            raise RuntimeError("middleware exploded")

        app.use(boom)
        async with TestClient(app) as client:
            response = await client.get("/widgets")
        assert response.status == 500
        assert json.loads(response.body)["message"] == "middleware exploded"
