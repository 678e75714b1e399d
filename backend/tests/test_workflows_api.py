"""
API tests for the workflow, node-test and model endpoints.
"""

import json
import pytest
from fastapi.testclient import TestClient

import sys
from pathlib import Path

backend_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(backend_root))

from fakes import FakeAdapters, make_config
from workflows_ai.api.dependencies import get_config, get_node_adapters
from workflows_ai.main import app
from workflows_ai.models.results import NodeSuccess


def parse_sse(body: str) -> list[dict]:
    events = []
    for block in body.split("\n\n"):
        block = block.strip()
        if not block:
            continue
        assert block.startswith("data: ")
        events.append(json.loads(block[len("data: "):]))
    return events


class ApiAdapters(FakeAdapters):
    async def generate_image(self, *, prompt, model=None, **options):
        self.calls.append(("image", prompt))
        return NodeSuccess(image="data:image/png;base64,AAAA", metadata={"model": model})

    async def embed(self, *, texts, model=None):
        self.calls.append(("embed", str(texts)))
        return NodeSuccess(object={"embeddings": [[0.1, 0.2]]}, metadata={"model": model})

    async def web_search(self, *, query, model=None, **options):
        self.calls.append(("search", query))
        self.search_options = options
        citations = [{"url": "https://a.dev", "title": "A", "startIndex": 0, "endIndex": 4}]
        return NodeSuccess(text=f"<{query}>", object={"citations": citations, "searchQueries": [query]})

    async def generate_with_tools(self, *, prompt, model=None, **options):
        self.calls.append(("agent", prompt))
        self.agent_options = options
        failure = self._failure(prompt, model)
        if failure is not None:
            return failure
        calls = [{"name": "calculator", "args": {"expression": "6 * 7"}}]
        return NodeSuccess(text="42", object={"toolCalls": calls, "toolResults": []}, usage=self._usage())


adapters = ApiAdapters()


@pytest.fixture(autouse=True)
def override_dependencies():
    global adapters
    adapters = ApiAdapters()
    app.dependency_overrides[get_node_adapters] = lambda: adapters
    app.dependency_overrides[get_config] = lambda: make_config()
    yield
    app.dependency_overrides.clear()


client = TestClient(app)


class TestHealth:
    def test_root(self):
        response = client.get("/api/")
        assert response.status_code == 200
        assert "message" in response.json()

    def test_models(self):
        response = client.get("/api/v1/models")
        assert response.status_code == 200
        ids = [m["id"] for m in response.json()["models"]]
        assert "gemini-2.5-flash" in ids

    def test_models_by_capability(self):
        response = client.get("/api/v1/models", params={"capability": "image"})
        assert [m["id"] for m in response.json()["models"]] == ["gemini-2.5-flash-image"]

    def test_workflow_types(self):
        body = client.get("/api/v1/workflows/types").json()
        assert "complex" in body["workflows"]
        assert "contentPipeline" in body["templates"]


class TestExecute:
    def test_streams_events_with_one_terminal(self):
        response = client.post(
            "/api/v1/workflows/execute", json={"workflowType": "sequential", "input": "Some text"}
        )
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.headers["cache-control"] == "no-cache"

        events = parse_sse(response.text)
        types = [e["type"] for e in events]
        assert types[0] == "start"
        assert types[-1] == "complete"
        assert sum(t in ("complete", "error") for t in types) == 1
        assert all(isinstance(e["timestamp"], int) for e in events)

    def test_failure_streams_single_error_terminal(self):
        global adapters
        adapters.fail_on = ("Translate to German",)
        response = client.post("/api/v1/workflows/execute", json={"workflowType": "parallel", "input": "hi"})

        events = parse_sse(response.text)
        assert events[-1]["type"] == "error"
        assert [e["type"] for e in events].count("error") == 1
        assert "metadata" in events[-1]["data"]

    @pytest.mark.parametrize(
        "body, detail",
        [
            ({"input": "x"}, "Workflow type is required"),
            ({"workflowType": "unknown", "input": "x"}, "Invalid workflow type"),
            ({"workflowType": "sequential"}, "Input is required"),
            ({"workflowType": "sequential", "input": "x", "model": "gpt-4o-mini"}, "Unknown model"),
        ],
    )
    def test_bad_requests_are_rejected_before_streaming(self, body, detail):
        response = client.post("/api/v1/workflows/execute", json=body)
        assert response.status_code == 400
        assert detail in response.json()["detail"]

    def test_run_returns_json(self):
        response = client.post("/api/v1/workflows/run", json={"workflowType": "conditional", "input": "short"})
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["result"]["branch_taken"] == "false"
        assert body["metadata"]["totalSteps"] == 1


class TestBuilder:
    def test_template_stream(self):
        response = client.post("/api/v1/workflows/builder", json={"template": "translationPipeline", "input": "hi"})
        events = parse_sse(response.text)

        assert events[0]["type"] == "start"
        assert events[0]["data"]["template"] == "translationPipeline"
        assert events[-1]["type"] == "complete"
        assert events[-1]["data"]["result"]["final_output"]["French"] == "<Translate to French: hi>"

    def test_config_only_rejected(self):
        response = client.post("/api/v1/workflows/builder", json={"config": {"nodes": [1]}, "input": "x"})
        assert response.status_code == 400

    def test_empty_request_rejected(self):
        response = client.post("/api/v1/workflows/builder", json={"input": "x"})
        assert response.status_code == 400
        assert "Either template or config" in response.json()["detail"]


class TestNodeTest:
    def test_text_generation_streams_chunks_then_done(self):
        response = client.post(
            "/api/v1/nodes/test",
            json={"nodeType": "text-generation", "config": {"prompt": "Say {{input}}"}, "input": "hi"},
        )
        assert response.status_code == 200
        events = parse_sse(response.text)

        assert all("chunk" in e for e in events[:-1])
        assert events[-2]["fullText"] == "<Say hi>"
        assert events[-1]["done"] is True
        assert events[-1]["text"] == "<Say hi>"
        assert events[-1]["usage"]["total_tokens"] == 5

    def test_text_generation_failure_is_error_frame(self):
        global adapters
        adapters.fail_on = ("boom",)
        response = client.post(
            "/api/v1/nodes/test", json={"nodeType": "text-generation", "config": {"prompt": "boom"}}
        )
        events = parse_sse(response.text)
        assert events == [{"error": "provider unavailable"}]

    def test_empty_prompt_falls_back_to_input(self):
        response = client.post(
            "/api/v1/nodes/test", json={"nodeType": "text-generation", "config": {}, "input": "just this"}
        )
        assert parse_sse(response.text)[-1]["text"] == "<just this>"

    def test_missing_prompt(self):
        response = client.post("/api/v1/nodes/test", json={"nodeType": "text-generation", "config": {}})
        assert response.status_code == 400
        assert response.json()["detail"] == "Prompt is required"

    def test_missing_node_type(self):
        response = client.post("/api/v1/nodes/test", json={"config": {}})
        assert response.status_code == 400

    def test_unsupported_node_type(self):
        response = client.post("/api/v1/nodes/test", json={"nodeType": "video-editing", "config": {}})
        assert response.status_code == 400

    def test_structured_data(self):
        response = client.post(
            "/api/v1/nodes/test",
            json={
                "nodeType": "structured-data",
                "config": {"prompt": "Extract from {{input}}", "schema": {"keywords": [""], "category": ""}},
                "input": "text",
            },
        )
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["object"] == {"keywords": ["ai", "workflows"], "category": "tech"}

    def test_structured_data_requires_schema(self):
        response = client.post(
            "/api/v1/nodes/test", json={"nodeType": "structured-data", "config": {"prompt": "x"}}
        )
        assert response.status_code == 400

    def test_structured_data_bad_schema(self):
        response = client.post(
            "/api/v1/nodes/test",
            json={"nodeType": "structured-data", "config": {"prompt": "x", "schema": {"a": None}}},
        )
        assert response.status_code == 400

    def test_structured_data_provider_failure_is_500(self):
        global adapters
        adapters.fail_on = ("x",)
        response = client.post(
            "/api/v1/nodes/test",
            json={"nodeType": "structured-data", "config": {"prompt": "x", "schema": {"a": ""}}},
        )
        assert response.status_code == 500
        assert response.json()["detail"] == "provider unavailable"

    def test_image_generation(self):
        response = client.post(
            "/api/v1/nodes/test", json={"nodeType": "image-generation", "config": {"prompt": "a {{input}}"}, "input": "cat"}
        )
        assert response.status_code == 200
        assert response.json()["image"].startswith("data:image/png")
        assert adapters.calls[-1] == ("image", "a cat")

    def test_embeddings(self):
        response = client.post("/api/v1/nodes/test", json={"nodeType": "embeddings", "input": ["a"]})
        assert response.status_code == 200
        assert response.json()["object"]["embeddings"] == [[0.1, 0.2]]

    def test_web_search(self):
        response = client.post(
            "/api/v1/nodes/test",
            json={
                "nodeType": "web-search",
                "config": {"query": "news about {{input}}", "filters": {"allowedDomains": ["a.dev"]}},
                "input": "python",
            },
        )
        assert response.status_code == 200
        body = response.json()
        assert body["text"] == "<news about python>"
        assert body["object"]["citations"][0]["url"] == "https://a.dev"
        assert adapters.search_options["allowed_domains"] == ["a.dev"]

    def test_web_search_requires_query(self):
        response = client.post("/api/v1/nodes/test", json={"nodeType": "web-search", "config": {}})
        assert response.status_code == 400
        assert response.json()["detail"] == "Query is required"

    def test_agent_with_tool_toggles(self):
        response = client.post(
            "/api/v1/nodes/test",
            json={"nodeType": "agent", "config": {"prompt": "6 times 7?", "tools": {"calculator": True}}},
        )
        assert response.status_code == 200
        body = response.json()
        assert body["text"] == "42"
        assert body["object"]["toolCalls"][0]["name"] == "calculator"
        assert adapters.agent_options["calculator"] is True
        assert adapters.agent_options["search"] is False
        assert adapters.agent_options["max_steps"] == 8

    def test_agent_rejects_bad_step_limit(self):
        response = client.post(
            "/api/v1/nodes/test", json={"nodeType": "agent", "config": {"prompt": "x", "maxSteps": "many"}}
        )
        assert response.status_code == 400

    def test_agent_failure_is_500(self):
        global adapters
        adapters.fail_on = ("boom",)
        response = client.post("/api/v1/nodes/test", json={"nodeType": "agent", "config": {"prompt": "boom"}})
        assert response.status_code == 500
        assert response.json()["detail"] == "provider unavailable"
